from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, UniqueConstraint
from sqlalchemy.sql import func
from .database import Base


class Folder(Base):
    __tablename__ = "library_folders"
    __table_args__ = (UniqueConstraint("owner_id", "path", name="uq_folder_owner_path"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    path = Column(String, nullable=False)
    is_selected = Column(Boolean, nullable=False, default=False)
    custom_prompt = Column(Text, nullable=True)
    owner_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "isSelected": bool(self.is_selected),
            "customPrompt": self.custom_prompt,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
