import math
from dataclasses import dataclass, field

from ..utils.errors import ValidationError
from ..utils.logging import logger
from . import catalog
from .costAccounting import compute_cost, record_usage
from .imageAnalysis import TokenUsage, extract_json_object

SNAPSHOT_LIMIT = 200
MIN_CONFIDENCE = 30
MAX_CONFIDENCE = 100
MAX_RESULTS = 20

SYSTEM_PROMPT = """You are a semantic search engine for a screenshot library.
Given a catalog of screenshots and a user query, find matching screenshots.
Match based on: keywords, semantic similarity, conceptual relationships.
Return JSON: { "results": [{ "id": X, "confidence": 0-100 }], "reasoning": "..." }
Confidence levels:
- 90-100: Excellent match (direct keyword match or very strong semantic match)
- 70-89: Good match (related concept or partial keyword match)
- 50-69: Moderate match (loosely related)
- 30-49: Weak match (tangentially related)
Return maximum 20 results, only include results with confidence >= 30.
Sort results by confidence descending."""


@dataclass
class SearchHit:
    id: int
    confidence: float

    def to_dict(self):
        return {"id": self.id, "confidence": self.confidence}


@dataclass
class SearchResult:
    results: list = field(default_factory=list)
    reasoning: str = ""
    usage: TokenUsage = None
    total_cost: float = 0.0
    total_screenshots: int = 0

    def to_dict(self):
        return {
            "results": [hit.to_dict() for hit in self.results],
            "reasoning": self.reasoning,
            "usage": {**self.usage.to_dict(), "totalCost": self.total_cost} if self.usage else None,
            "totalScreenshots": self.total_screenshots,
        }


def catalog_line(shot):
    keywords = ", ".join(shot.keyword_list)
    return (
        f'[ID:{shot.id}] "{shot.filename}" | {shot.ai_suggested_name or "no suggestion"}'
        f' | Keywords: {keywords or "none"} | Description: {shot.description or "none"}'
    )


def build_search_prompt(screenshots, query):
    catalog_text = "\n".join(catalog_line(s) for s in screenshots)
    return (
        f"Screenshot Catalog:\n{catalog_text}\n\n"
        f'User Search Query: "{query.strip()}"\n\n'
        "Find matching screenshots and return the results as JSON."
    )


def _as_id(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _as_confidence(value):
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(confidence):
        return None
    return min(confidence, MAX_CONFIDENCE)


def validate_hits(raw_results, valid_ids):
    """Keep hits on known ids with confidence >= 30, best first, at most 20.

    The model output is untrusted: ids may be invented or stringly typed,
    confidences may be out of range and ordering may be ignored.
    """
    if not isinstance(raw_results, list):
        return []
    best = {}
    for item in raw_results:
        if not isinstance(item, dict):
            continue
        hit_id = _as_id(item.get("id"))
        confidence = _as_confidence(item.get("confidence"))
        if hit_id is None or hit_id not in valid_ids or confidence is None:
            continue
        if confidence < MIN_CONFIDENCE:
            continue
        if hit_id not in best or confidence > best[hit_id]:
            best[hit_id] = confidence
    hits = [SearchHit(id=i, confidence=c) for i, c in best.items()]
    hits.sort(key=lambda h: h.confidence, reverse=True)
    return hits[:MAX_RESULTS]


def semantic_search(db, analyzer, query, model=None, owner_id=None):
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Query is required")
    model = model or catalog.get_setting(db, "gemini_model", owner_id=owner_id)

    screenshots = catalog.recent_screenshots(db, SNAPSHOT_LIMIT, owner_id=owner_id)
    if not screenshots:
        return SearchResult(
            reasoning="No screenshots in the library to search.",
            usage=TokenUsage(model=model),
        )

    text, usage = analyzer.complete([SYSTEM_PROMPT, build_search_prompt(screenshots, query)], model=model)
    # Booked before parsing: the call is billed whatever it returned
    record_usage(db, usage, "search", owner_id=owner_id)
    cost = compute_cost(usage.model, usage.prompt_tokens, usage.output_tokens)

    parsed = extract_json_object(text)
    hits = validate_hits(parsed.get("results"), {s.id for s in screenshots})
    reasoning = parsed.get("reasoning")
    logger.info(f"AI search {query.strip()!r}: {len(hits)} hit(s) over {len(screenshots)} screenshot(s)")
    return SearchResult(
        results=hits,
        reasoning=reasoning if isinstance(reasoning, str) else "",
        usage=usage,
        total_cost=cost.total_cost,
        total_screenshots=len(screenshots),
    )
