"""Paste/drop ingestion: analyze, store, persist, optionally publish.

Stages run in order within a single request:

    received -> analyzed -> folder_resolved -> metadata_embedded
             -> stored -> persisted -> [publish_triggered]

The description is embedded before the single storage write. Nothing is
written before ``stored``, so an analysis or validation failure leaves no
trace. A database failure after the file was stored leaves that
file orphaned; it is logged with its key and the error is re-raised.
Metadata embedding and publish dispatch never fail the ingestion.
"""
import base64
import binascii
import re
import time
from dataclasses import dataclass, field

from ..utils.errors import NotFoundError, PersistenceError, StorageError, ValidationError
from ..utils.logging import logger
from . import catalog
from .costAccounting import compute_cost, record_usage
from .imageAnalysis import sanitize_filename
from .imageMetadata import embed_description
from .storage import folder_key

UNSET = object()
FALLBACK_FILENAME = "screenshot"

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def decode_image_payload(payload):
    """Accept raw bytes or a (data URL) base64 string."""
    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    elif isinstance(payload, str):
        try:
            data = base64.b64decode(_DATA_URL_PREFIX.sub("", payload.strip()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Image is not valid base64") from e
    else:
        raise ValidationError("No image provided")
    if not data:
        raise ValidationError("No image provided")
    return data


def build_filename(suggested, timestamp_ms=None):
    stem = sanitize_filename(suggested) or FALLBACK_FILENAME
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{stem}_{timestamp_ms}.png"


@dataclass
class IngestionResult:
    screenshot: object
    analysis: object
    cost: object
    stages: list = field(default_factory=list)
    publish_queued: bool = False

    def to_dict(self):
        return {
            "screenshot": self.screenshot.to_dict(),
            "usage": {**self.analysis.usage.to_dict(), **self.cost.to_dict()},
            "publishQueued": self.publish_queued,
        }


class IngestionPipeline:
    def __init__(self, db, store, analyzer, owner_id=None, on_persisted=None):
        self.db = db
        self.store = store
        self.analyzer = analyzer
        self.owner_id = owner_id
        self.on_persisted = on_persisted

    def _book_usage(self, usage, screenshot_id):
        """One ledger entry per completed analysis call, linked when a row exists."""
        try:
            record_usage(self.db, usage, "analyze", screenshot_id=screenshot_id, owner_id=self.owner_id)
        except PersistenceError:
            logger.exception(f"Usage for {usage.model} call not recorded")

    def resolve_instruction(self, override, folder):
        if override and override.strip():
            return override
        if folder is not None and folder.custom_prompt:
            return folder.custom_prompt
        return catalog.get_setting(self.db, "customPrompt", owner_id=self.owner_id)

    def _explicit_folder(self, target_folder_id):
        if target_folder_id is UNSET or target_folder_id is None:
            return None
        try:
            folder_id = int(target_folder_id)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid folder id: {target_folder_id!r}") from e
        try:
            return catalog.get_folder(self.db, folder_id, owner_id=self.owner_id)
        except NotFoundError as e:
            raise ValidationError(f"Folder {folder_id} does not exist") from e

    def resolve_folder(self, target_folder_id, explicit):
        """Explicit folder, explicit Root (None), or the selected folder."""
        if explicit is not None:
            return explicit
        if target_folder_id is None:
            return None
        return catalog.get_selected_folder(self.db, owner_id=self.owner_id)

    def ingest(self, image, target_folder_id=UNSET, instruction=None, publish=False, mime_type="image/png"):
        stages = ["received"]
        if instruction is not None and not isinstance(instruction, str):
            raise ValidationError("instruction must be a string")
        image_bytes = decode_image_payload(image)
        # Read-only lookup; the destination folder's prompt feeds the analysis
        folder = self.resolve_folder(target_folder_id, self._explicit_folder(target_folder_id))

        model = catalog.get_setting(self.db, "gemini_model", owner_id=self.owner_id)
        prompt = self.resolve_instruction(instruction, folder)
        analysis = self.analyzer.analyze(image_bytes, prompt, model=model, mime_type=mime_type)
        stages.append("analyzed")

        prefix = folder_key(folder.path) if folder is not None else None
        stages.append("folder_resolved")

        filename = build_filename(analysis.suggested_filename)
        key = f"{prefix}/{filename}" if prefix else filename

        # Embed before the single write so the stored object already carries it
        payload = embed_description(image_bytes, analysis.description)
        stages.append("metadata_embedded")
        try:
            self.store.put(key, payload, "image/png")
        except StorageError:
            self._book_usage(analysis.usage, None)
            raise
        stages.append("stored")

        try:
            shot = catalog.create_screenshot(
                self.db,
                filename=filename,
                filepath=key,
                description=analysis.description,
                ai_suggested_name=analysis.suggested_filename,
                keywords=analysis.keywords,
                folder_id=folder.id if folder is not None else None,
                owner_id=self.owner_id,
            )
        except PersistenceError:
            logger.error(f"Screenshot row not written, stored file orphaned: {key}")
            self._book_usage(analysis.usage, None)
            raise
        stages.append("persisted")
        logger.info(f"Ingested screenshot {shot.id} as {key}")

        self._book_usage(analysis.usage, shot.id)
        cost = compute_cost(analysis.usage.model, analysis.usage.prompt_tokens, analysis.usage.output_tokens)

        result = IngestionResult(screenshot=shot, analysis=analysis, cost=cost, stages=stages)
        if publish and self.on_persisted is not None:
            try:
                self.on_persisted(shot.id, self.owner_id)
                result.publish_queued = True
                stages.append("publish_triggered")
            except Exception:
                logger.exception(f"Publish dispatch failed for screenshot {shot.id}")
        return result
