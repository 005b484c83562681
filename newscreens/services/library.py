import io
import zipfile

from ..utils.errors import NotFoundError, StorageError, StorageNotFoundError, ValidationError
from ..utils.logging import logger
from . import catalog
from .storage import StoredPath, delete_stored, read_stored


def _remove_file(store, shot):
    """Best-effort removal of a screenshot's bytes. Returns an error message or None."""
    try:
        delete_stored(store, shot.filepath)
    except (StorageError, ValidationError) as e:
        logger.warning(f"Could not delete file for screenshot {shot.id} ({shot.filepath}): {e.message}")
        return e.message
    return None


def delete_screenshot(db, store, screenshot_id, owner_id=None):
    shot = catalog.get_screenshot(db, screenshot_id, owner_id=owner_id)
    shot_id = shot.id
    file_error = _remove_file(store, shot)
    catalog.delete_screenshots(db, [shot_id], owner_id=owner_id)
    return {"id": shot_id, "deleted": True, "fileError": file_error}


def bulk_delete(db, store, ids, owner_id=None):
    if not ids or not isinstance(ids, list):
        raise ValidationError("No ids provided")
    screenshots = catalog.get_screenshots(db, ids, owner_id=owner_id)
    results = []
    for shot in screenshots:
        results.append({"id": shot.id, "fileError": _remove_file(store, shot)})
    deleted = catalog.delete_screenshots(db, [s.id for s in screenshots], owner_id=owner_id)
    logger.info(f"Bulk delete: {deleted} of {len(ids)} requested row(s) removed")
    return {"deleted": deleted, "results": results}


def bulk_download(db, store, ids, owner_id=None):
    """Zip the requested screenshots. Unreadable files are skipped and logged."""
    if not ids or not isinstance(ids, list):
        raise ValidationError("No ids provided")
    screenshots = catalog.get_screenshots(db, ids, owner_id=owner_id)
    if not screenshots:
        raise NotFoundError("No screenshots found")

    buffer = io.BytesIO()
    added = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=5) as archive:
        for shot in screenshots:
            try:
                data = read_stored(store, shot.filepath)
            except StorageNotFoundError:
                logger.warning(f"File not found for screenshot {shot.id}: {shot.filepath}")
                continue
            except StorageError as e:
                logger.warning(f"Skipping screenshot {shot.id}: {e.message}")
                continue
            archive.writestr(shot.filename or StoredPath.parse(shot.filepath).basename(), data)
            added += 1
    buffer.seek(0)
    logger.info(f"Bulk download: {added} of {len(screenshots)} file(s) archived")
    return buffer
