from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from sqlalchemy.sql import func
from .database import Base


class UsageRecord(Base):
    """One AI call. Rows are inserted once and never updated."""

    __tablename__ = "api_usage"

    id = Column(Integer, primary_key=True, index=True)
    model = Column(String, nullable=False, index=True)
    operation = Column(String, nullable=False, default="analyze")
    prompt_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    input_cost = Column(Float, nullable=False, default=0.0)
    output_cost = Column(Float, nullable=False, default=0.0)
    total_cost = Column(Float, nullable=False, default=0.0)
    screenshot_id = Column(Integer, ForeignKey("screenshots.id", ondelete="SET NULL"), nullable=True)
    owner_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "model": self.model,
            "operation": self.operation,
            "promptTokens": self.prompt_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "totalCost": self.total_cost,
            "screenshotId": self.screenshot_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
