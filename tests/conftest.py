"""Shared fixtures: temp SQLite database, temp image store, fake Gemini client."""
import io
import json
import os
from types import SimpleNamespace

os.environ.setdefault("LOG_DIR", "")

import pytest
from PIL import Image as PILImage

from newscreens import create_app
from newscreens.models.database import SessionLocal
from newscreens.services.imageAnalysis import VisionAnalyzer
from newscreens.services.storage import LocalImageStore


def make_png(size=(8, 8), color=(200, 30, 30)):
    buf = io.BytesIO()
    PILImage.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeModels:
    def __init__(self):
        self.responses = []
        self.calls = []

    def queue(self, text, prompt_tokens=100, output_tokens=20, total_tokens=None):
        usage = SimpleNamespace(
            prompt_token_count=prompt_tokens,
            candidates_token_count=output_tokens,
            total_token_count=prompt_tokens + output_tokens if total_tokens is None else total_tokens,
        )
        self.responses.append(SimpleNamespace(text=text, usage_metadata=usage))

    def queue_json(self, payload, **usage):
        self.queue("```json\n" + json.dumps(payload) + "\n```", **usage)

    def generate_content(self, model, contents):
        self.calls.append({"model": model, "contents": contents})
        if not self.responses:
            raise RuntimeError("no fake response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeGenaiClient:
    def __init__(self):
        self.models = FakeModels()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def genai_client():
    return FakeGenaiClient()


@pytest.fixture
def analyzer(genai_client):
    return VisionAnalyzer(client=genai_client)


@pytest.fixture
def store(tmp_path):
    return LocalImageStore(tmp_path / "screenshots")


@pytest.fixture
def app(tmp_path, store, analyzer):
    app = create_app(
        config={
            "TESTING": True,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'test.db'}",
            "START_WORKER": False,
        },
        image_store=store,
        analyzer=analyzer,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    session = SessionLocal()
    yield session
    session.close()
