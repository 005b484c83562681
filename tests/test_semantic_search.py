import pytest

from newscreens.models.usageModel import UsageRecord
from newscreens.services import catalog, semanticSearch
from newscreens.services.semanticSearch import (
    MAX_RESULTS,
    catalog_line,
    semantic_search,
    validate_hits,
)
from newscreens.utils.errors import AnalysisParseError, ValidationError


@pytest.fixture
def shots(db):
    return [
        catalog.create_screenshot(db, "login.png", "login.png", description="Login form",
                                  ai_suggested_name="login_form", keywords=["login", "form"]),
        catalog.create_screenshot(db, "chart.png", "chart.png", description="Revenue chart"),
        catalog.create_screenshot(db, "code.png", "code.png", keywords=["python"]),
    ]


def test_hallucinated_and_weak_hits_are_dropped(db, analyzer, genai_client, shots):
    login, chart, code = shots
    genai_client.models.queue_json({
        "results": [
            {"id": 9999, "confidence": 95},
            {"id": chart.id, "confidence": 20},
            {"id": str(code.id), "confidence": 60},
            {"id": login.id, "confidence": 88},
        ],
        "reasoning": "Login and code look relevant.",
    })

    result = semantic_search(db, analyzer, "sign in screen")

    assert [(h.id, h.confidence) for h in result.results] == [(login.id, 88), (code.id, 60)]
    assert result.reasoning == "Login and code look relevant."
    assert result.total_screenshots == 3


def test_usage_recorded_even_without_hits(db, analyzer, genai_client, shots):
    genai_client.models.queue_json({"results": [], "reasoning": "Nothing matches."})

    result = semantic_search(db, analyzer, "kittens")

    assert result.results == []
    records = db.query(UsageRecord).all()
    assert [(r.operation, r.screenshot_id) for r in records] == [("search", None)]
    assert result.to_dict()["usage"]["promptTokens"] == 100


def test_usage_recorded_when_response_unparseable(db, analyzer, genai_client, shots):
    genai_client.models.queue("no json here")

    with pytest.raises(AnalysisParseError):
        semantic_search(db, analyzer, "kittens")

    assert db.query(UsageRecord).count() == 1


def test_empty_library_skips_model_call(db, analyzer, genai_client):
    result = semantic_search(db, analyzer, "anything")

    assert result.results == []
    assert result.reasoning == "No screenshots in the library to search."
    assert genai_client.models.calls == []
    assert db.query(UsageRecord).count() == 0


@pytest.mark.parametrize("query", ["", "   ", None])
def test_empty_query_rejected(db, analyzer, query):
    with pytest.raises(ValidationError):
        semantic_search(db, analyzer, query)


def test_prompt_lists_catalog(db, analyzer, genai_client, shots):
    genai_client.models.queue_json({"results": []})

    semantic_search(db, analyzer, "login")

    prompt = genai_client.models.calls[0]["contents"][1]
    assert catalog_line(shots[0]) in prompt
    assert f"[ID:{shots[2].id}] \"code.png\" | no suggestion | Keywords: python" in prompt
    assert 'User Search Query: "login"' in prompt


def test_validate_hits_caps_and_sorts():
    raw = [{"id": i, "confidence": 30 + i} for i in range(40)]
    hits = validate_hits(raw, set(range(40)))

    assert len(hits) == MAX_RESULTS
    assert [h.confidence for h in hits] == sorted((h.confidence for h in hits), reverse=True)
    assert hits[0].id == 39


def test_validate_hits_rejects_malformed_entries():
    raw = [
        {"id": True, "confidence": 90},
        {"id": 1, "confidence": "high"},
        {"id": 1.5, "confidence": 90},
        "not a dict",
        {"id": 2, "confidence": 150},
        {"id": 2, "confidence": 40},
        {"id": 3, "confidence": 30},
    ]
    hits = validate_hits(raw, {1, 2, 3})

    assert [(h.id, h.confidence) for h in hits] == [(2, 100), (3, 30)]
    assert validate_hits("nope", {1}) == []


def test_only_most_recent_screenshots_are_sent(db, analyzer, genai_client, shots, monkeypatch):
    monkeypatch.setattr(semanticSearch, "SNAPSHOT_LIMIT", 2)
    genai_client.models.queue_json({"results": [{"id": shots[0].id, "confidence": 99}]})

    result = semantic_search(db, analyzer, "login")

    prompt = genai_client.models.calls[0]["contents"][1]
    assert "login.png" not in prompt
    assert result.total_screenshots == 2
    assert result.results == []
