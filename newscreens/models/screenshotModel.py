import json
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from .database import Base


class Screenshot(Base):
    __tablename__ = "screenshots"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(String, nullable=False)
    filepath = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    ai_suggested_name = Column(String, nullable=True)
    keywords = Column(Text, nullable=True)  # JSON list
    folder_id = Column(Integer, ForeignKey("library_folders.id", ondelete="SET NULL"), nullable=True, index=True)
    owner_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    wp_image_url = Column(String, nullable=True)
    wp_attachment_id = Column(Integer, nullable=True)

    @property
    def keyword_list(self):
        if not self.keywords:
            return []
        try:
            parsed = json.loads(self.keywords)
        except ValueError:
            return []
        return [str(k) for k in parsed] if isinstance(parsed, list) else []

    def to_dict(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "filepath": self.filepath,
            "description": self.description,
            "aiSuggestedName": self.ai_suggested_name,
            "keywords": self.keyword_list,
            "folderId": self.folder_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "wpImageUrl": self.wp_image_url,
            "wpAttachmentId": self.wp_attachment_id,
        }
