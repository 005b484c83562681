from sqlalchemy import Column, Integer, String, Text, UniqueConstraint
from .database import Base


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("owner_id", "key", name="uq_setting_owner_key"),)

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, index=True)
    value = Column(Text, nullable=False)
    owner_id = Column(String, nullable=True, index=True)  # NULL = global
