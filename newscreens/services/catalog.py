"""Persistence for screenshots, folders and settings.

Every public function is one logical transaction: it commits on success and
rolls back and raises PersistenceError on any database failure. All queries
are limited to the caller's owner scope (``None`` is the global scope).

Text search is case-insensitive on every backend: both the column and the
query are lowered before the LIKE comparison.
"""
import json
from functools import wraps

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models.folderModel import Folder
from ..models.screenshotModel import Screenshot
from ..models.settingModel import Setting
from ..utils.errors import NotFoundError, PersistenceError, ValidationError
from ..utils.logging import logger
from .imageAnalysis import DEFAULT_INSTRUCTION, DEFAULT_MODEL
from .storage import LegacyAbsolutePath, StoredPath, is_legacy_absolute, path_basename

SETTING_DEFAULTS = {
    "customPrompt": DEFAULT_INSTRUCTION,
    "gemini_model": DEFAULT_MODEL,
    "wordpress_site_url": "",
    "wordpress_api_key": "",
    "wordpress_auto_upload": "false",
}


def transactional(fn):
    @wraps(fn)
    def wrapper(db, *args, **kwargs):
        try:
            return fn(db, *args, **kwargs)
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"{fn.__name__} failed")
            raise PersistenceError(f"Database error in {fn.__name__}: {e}") from e
    return wrapper


# --- Screenshots ---

@transactional
def create_screenshot(db, filename, filepath, description=None, ai_suggested_name=None,
                      keywords=None, folder_id=None, owner_id=None):
    shot = Screenshot(
        filename=filename,
        filepath=filepath,
        description=description,
        ai_suggested_name=ai_suggested_name,
        keywords=json.dumps(list(keywords)) if keywords else None,
        folder_id=folder_id,
        owner_id=owner_id,
    )
    db.add(shot)
    db.commit()
    db.refresh(shot)
    return shot


def _screenshots(db, owner_id):
    return db.query(Screenshot).filter(Screenshot.owner_id == owner_id)


@transactional
def get_screenshot(db, screenshot_id, owner_id=None):
    shot = _screenshots(db, owner_id).filter(Screenshot.id == screenshot_id).first()
    if not shot:
        raise NotFoundError("Screenshot not found")
    return shot


@transactional
def get_screenshots(db, ids, owner_id=None):
    if not ids:
        return []
    return _screenshots(db, owner_id).filter(Screenshot.id.in_(ids)).order_by(Screenshot.id).all()


@transactional
def list_screenshots(db, query=None, folder_id=None, owner_id=None):
    q = _screenshots(db, owner_id)
    if folder_id is not None:
        q = q.filter(Screenshot.folder_id == folder_id)
    if query:
        needle = query.lower()
        q = q.filter(or_(
            func.lower(Screenshot.filename).contains(needle, autoescape=True),
            func.lower(Screenshot.description).contains(needle, autoescape=True),
            func.lower(Screenshot.ai_suggested_name).contains(needle, autoescape=True),
            func.lower(Screenshot.keywords).contains(needle, autoescape=True),
        ))
    return q.order_by(Screenshot.created_at.desc(), Screenshot.id.desc()).all()


@transactional
def recent_screenshots(db, limit, owner_id=None):
    return (
        _screenshots(db, owner_id)
        .order_by(Screenshot.created_at.desc(), Screenshot.id.desc())
        .limit(limit)
        .all()
    )


@transactional
def set_published(db, screenshot_id, url, attachment_id, owner_id=None):
    """Record the publish result. An already published screenshot keeps its first URL."""
    shot = get_screenshot(db, screenshot_id, owner_id=owner_id)
    if shot.wp_image_url:
        return shot
    shot.wp_image_url = url
    shot.wp_attachment_id = attachment_id
    db.commit()
    db.refresh(shot)
    return shot


@transactional
def delete_screenshots(db, ids, owner_id=None):
    count = (
        _screenshots(db, owner_id)
        .filter(Screenshot.id.in_(ids))
        .delete(synchronize_session=False)
    )
    db.commit()
    return count


# --- Folders ---

def _folders(db, owner_id):
    return db.query(Folder).filter(Folder.owner_id == owner_id)


@transactional
def list_folders(db, owner_id=None):
    return _folders(db, owner_id).order_by(Folder.created_at.asc(), Folder.id.asc()).all()


@transactional
def get_folder(db, folder_id, owner_id=None):
    folder = _folders(db, owner_id).filter(Folder.id == folder_id).first()
    if not folder:
        raise NotFoundError("Folder not found")
    return folder


@transactional
def get_selected_folder(db, owner_id=None):
    return _folders(db, owner_id).filter(Folder.is_selected.is_(True)).first()


def normalize_folder_path(path):
    """Folder paths are stored as bare names; absolute paths reduce to their last segment."""
    if not isinstance(path, str) or not path.strip():
        raise ValidationError("Path is required")
    path = path.strip()
    name = path_basename(path) if is_legacy_absolute(path) else path.strip("/\\")
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ValidationError(f"Invalid folder name: {path!r}")
    return name


@transactional
def create_folder(db, path, name=None, owner_id=None):
    normalized = normalize_folder_path(path)
    if _folders(db, owner_id).filter(Folder.path == normalized).first():
        raise ValidationError("Folder already added")

    is_first = _folders(db, owner_id).count() == 0
    folder = Folder(
        name=(name or "").strip() or path_basename(normalized),
        path=normalized,
        is_selected=is_first,
        owner_id=owner_id,
    )
    db.add(folder)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("Folder already added") from e
    db.refresh(folder)
    logger.info(f"Created folder {folder.id} ({folder.path})")
    return folder


@transactional
def select_folder(db, folder_id, owner_id=None):
    """Make folder_id the only selected folder in its scope, in one commit."""
    folder = get_folder(db, folder_id, owner_id=owner_id)
    _folders(db, owner_id).filter(Folder.id != folder.id).update(
        {Folder.is_selected: False}, synchronize_session=False
    )
    folder.is_selected = True
    db.commit()
    db.refresh(folder)
    return folder


@transactional
def select_root(db, owner_id=None):
    _folders(db, owner_id).update({Folder.is_selected: False}, synchronize_session=False)
    db.commit()


@transactional
def update_folder_prompt(db, folder_id, prompt, owner_id=None):
    folder = get_folder(db, folder_id, owner_id=owner_id)
    prompt = (prompt or "").strip()
    folder.custom_prompt = None if not prompt or prompt == DEFAULT_INSTRUCTION.strip() else prompt
    db.commit()
    db.refresh(folder)
    return folder


@transactional
def delete_folder(db, folder_id, owner_id=None):
    """Delete a folder. Its screenshots move to Root; selection passes to another folder."""
    folder = get_folder(db, folder_id, owner_id=owner_id)
    was_selected = folder.is_selected

    released = (
        _screenshots(db, owner_id)
        .filter(Screenshot.folder_id == folder.id)
        .update({Screenshot.folder_id: None}, synchronize_session=False)
    )
    db.delete(folder)
    db.flush()

    replacement = None
    if was_selected:
        replacement = _folders(db, owner_id).order_by(Folder.id.asc()).first()
        if replacement:
            replacement.is_selected = True
    db.commit()
    logger.info(
        f"Deleted folder {folder_id}, {released} screenshot(s) moved to root"
        + (f", selected folder {replacement.id}" if replacement else "")
    )
    return released


@transactional
def migrate_folder_paths(db, owner_id=None):
    """Rewrite legacy absolute folder paths to bare folder names. Safe to rerun."""
    results = []
    for folder in _folders(db, owner_id).order_by(Folder.id).all():
        parsed = StoredPath.parse(folder.path)
        if isinstance(parsed, LegacyAbsolutePath):
            new_path = parsed.basename()
            results.append({"id": folder.id, "oldPath": folder.path, "newPath": new_path, "migrated": True})
            folder.path = new_path
        else:
            results.append({"id": folder.id, "oldPath": folder.path, "newPath": folder.path, "migrated": False})
    db.commit()
    return results


# --- Settings ---

def _setting_row(db, key, owner_id):
    return db.query(Setting).filter(Setting.key == key, Setting.owner_id == owner_id).first()


@transactional
def get_setting(db, key, owner_id=None):
    """The scope's own value, else the compiled-in default. Scopes never inherit."""
    row = _setting_row(db, key, owner_id)
    if row is not None:
        return row.value
    return SETTING_DEFAULTS.get(key)


@transactional
def get_settings(db, owner_id=None):
    return {key: get_setting(db, key, owner_id=owner_id) for key in SETTING_DEFAULTS}


def is_default_setting(db, key, owner_id=None):
    return _setting_row(db, key, owner_id) is None


@transactional
def set_setting(db, key, value, owner_id=None):
    """Store a setting. Empty or default values delete the row instead."""
    if key not in SETTING_DEFAULTS:
        raise ValidationError(f"Unknown setting: {key}")
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"Invalid value for {key}")

    row = _setting_row(db, key, owner_id)
    if not value or value == SETTING_DEFAULTS[key]:
        if row is not None:
            db.delete(row)
    elif row is not None:
        row.value = value
    else:
        db.add(Setting(key=key, value=value, owner_id=owner_id))
    db.commit()
