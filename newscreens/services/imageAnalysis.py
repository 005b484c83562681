import json
import re
from dataclasses import dataclass, field

from google import genai
from google.genai import types

from ..utils.errors import AnalysisError, AnalysisParseError
from ..utils.logging import logger

DEFAULT_MODEL = "gemini-2.0-flash-lite"

# Appended to every analysis prompt. Users edit the instruction only, so the
# response always carries the three fields below.
JSON_OUTPUT_FORMAT = """

OUTPUT FORMAT (strict JSON):
{
  "description": "[Comprehensive description with ALL data points extracted]",
  "suggestedFilename": "[descriptive_filename_with_entities_and_metrics]",
  "keywords": ["keyword1", "keyword2", "keyword3", "keyword4"]
}"""

DEFAULT_INSTRUCTION = """Analyze this screenshot and provide:
1. A brief description of what the image shows (1-2 sentences)
2. A suggested filename that describes the content (no extension, use underscores for spaces, lowercase, max 50 chars)
3. 3-7 relevant keywords/tags that describe the content (each keyword must be at least 3 characters)"""

MAX_FILENAME_LENGTH = 50
MIN_KEYWORD_LENGTH = 3

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FILENAME_INVALID = re.compile(r"[^a-z0-9_]")


@dataclass
class TokenUsage:
    model: str
    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self):
        return {
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class AnalysisResult:
    description: str
    suggested_filename: str
    keywords: list = field(default_factory=list)
    usage: TokenUsage = None

    def to_dict(self):
        return {
            "description": self.description,
            "suggestedFilename": self.suggested_filename,
            "keywords": list(self.keywords),
            "usage": self.usage.to_dict() if self.usage else None,
        }


def build_prompt(instruction=None):
    instruction = (instruction or "").strip() or DEFAULT_INSTRUCTION
    return instruction + JSON_OUTPUT_FORMAT


def sanitize_filename(name):
    """Lowercase, map anything outside [a-z0-9_] to "_", trim edge underscores, cap at 50."""
    cleaned = _FILENAME_INVALID.sub("_", str(name or "").lower()).strip("_")
    return cleaned[:MAX_FILENAME_LENGTH].rstrip("_")


def filter_keywords(keywords):
    if not isinstance(keywords, list):
        return []
    return [k for k in keywords if isinstance(k, str) and len(k) >= MIN_KEYWORD_LENGTH]


def extract_json_object(text):
    """Parse the first {...} block of a model response into a dict."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise AnalysisParseError("Failed to parse AI response: no JSON object found")
    try:
        parsed = json.loads(match.group(0))
    except ValueError as e:
        raise AnalysisParseError(f"Failed to parse AI response JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise AnalysisParseError("Failed to parse AI response: not a JSON object")
    return parsed


def _usage_from_response(response, model):
    meta = getattr(response, "usage_metadata", None)
    return TokenUsage(
        model=model,
        prompt_tokens=getattr(meta, "prompt_token_count", None) or 0,
        output_tokens=getattr(meta, "candidates_token_count", None) or 0,
        total_tokens=getattr(meta, "total_token_count", None) or 0,
    )


class VisionAnalyzer:
    """Thin wrapper around the Gemini generate_content call."""

    def __init__(self, client=None, api_key=None):
        self._client = client
        self._api_key = api_key

    @property
    def client(self):
        if self._client is None:
            if not self._api_key:
                raise AnalysisError("GEMINI_API_KEY is not configured", status_code=503)
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def complete(self, parts, model=DEFAULT_MODEL):
        """Send content parts to the model, return (text, TokenUsage)."""
        try:
            response = self.client.models.generate_content(model=model, contents=parts)
        except AnalysisError:
            raise
        except Exception as e:
            logger.exception(f"Gemini request failed ({model})")
            raise AnalysisError(f"AI request failed: {e}") from e
        usage = _usage_from_response(response, model)
        logger.info(f"Gemini {model}: {usage.prompt_tokens} prompt / {usage.output_tokens} output tokens")
        return response.text or "", usage

    def analyze(self, image_bytes, instruction=None, model=DEFAULT_MODEL, mime_type="image/png"):
        prompt = build_prompt(instruction)
        image_part = types.Part.from_bytes(data=image_bytes, mime_type=mime_type)
        text, usage = self.complete([prompt, image_part], model=model)

        parsed = extract_json_object(text)
        description = parsed.get("description")
        return AnalysisResult(
            description="" if description is None else str(description),
            suggested_filename=sanitize_filename(parsed.get("suggestedFilename")),
            keywords=filter_keywords(parsed.get("keywords")),
            usage=usage,
        )

    def test_connection(self, model=DEFAULT_MODEL):
        text, _ = self.complete(["Say 'OK'"], model=model)
        return text.strip()
