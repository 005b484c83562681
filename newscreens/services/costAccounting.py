from dataclasses import dataclass
from sqlalchemy.exc import SQLAlchemyError
from ..models.usageModel import UsageRecord
from ..utils.errors import PersistenceError
from ..utils.logging import logger

# USD per 1K tokens
PRICING = {
    "gemini-2.0-flash-lite": {"input": 0.000075, "output": 0.0003},
    "gemini-2.0-flash": {"input": 0.0001, "output": 0.0004},
    "gemini-2.5-flash-lite": {"input": 0.0001, "output": 0.0004},
    "gemini-2.5-flash": {"input": 0.0003, "output": 0.0025},
    "gemini-2.5-pro": {"input": 0.00125, "output": 0.01},
    "gemini-1.5-flash": {"input": 0.000075, "output": 0.0003},
    "gemini-1.5-pro": {"input": 0.00125, "output": 0.005},
}

_ZERO_PRICE = {"input": 0.0, "output": 0.0}


@dataclass(frozen=True)
class CostBreakdown:
    input_cost: float
    output_cost: float
    total_cost: float

    def to_dict(self):
        return {"inputCost": self.input_cost, "outputCost": self.output_cost, "totalCost": self.total_cost}


def compute_cost(model, prompt_tokens, output_tokens):
    price = PRICING.get(model, _ZERO_PRICE)
    input_cost = (prompt_tokens / 1000) * price["input"]
    output_cost = (output_tokens / 1000) * price["output"]
    return CostBreakdown(input_cost, output_cost, input_cost + output_cost)


def record_usage(db, usage, operation, screenshot_id=None, owner_id=None):
    """Append one ledger entry for a completed AI call."""
    cost = compute_cost(usage.model, usage.prompt_tokens, usage.output_tokens)
    record = UsageRecord(
        model=usage.model,
        operation=operation,
        prompt_tokens=usage.prompt_tokens,
        output_tokens=usage.output_tokens,
        total_tokens=usage.total_tokens or usage.prompt_tokens + usage.output_tokens,
        input_cost=cost.input_cost,
        output_cost=cost.output_cost,
        total_cost=cost.total_cost,
        screenshot_id=screenshot_id,
        owner_id=owner_id,
    )
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to record usage: {e}") from e
    logger.info(f"Usage {operation} {usage.model}: ${cost.total_cost:.6f}")
    return record


def list_usage(db, owner_id=None, limit=100):
    return (
        db.query(UsageRecord)
        .filter(UsageRecord.owner_id == owner_id)
        .order_by(UsageRecord.created_at.desc(), UsageRecord.id.desc())
        .limit(limit)
        .all()
    )
