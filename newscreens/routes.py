import io
import time
from flask import Blueprint, current_app, request, jsonify, send_file, url_for
from werkzeug.exceptions import RequestEntityTooLarge
from .utils.errors import NewScreensError, StorageError, ValidationError
from .utils.logging import logger
from .models.database import SessionLocal
from .services import catalog
from .services.costAccounting import compute_cost, list_usage, record_usage
from .services.imageAnalysis import DEFAULT_INSTRUCTION
from .services.imageMetadata import read_description
from .services.ingestion import UNSET, IngestionPipeline, decode_image_payload
from .services.library import bulk_delete, bulk_download, delete_screenshot
from .services.semanticSearch import semantic_search
from .services.storage import content_type_for, folder_key, read_stored, StoredPath
from .services.wordpress import WordPressClient, bulk_publish, publish_screenshot, publishing_enabled

routes_bp = Blueprint("routes_bp", __name__)

OWNER_HEADER = "X-Owner-Id"
ROOT_FOLDER_VALUES = {"", "null", "none", "root"}


def success_response(data, code=200):
    return jsonify({"status": "success", "data": data, "error": None}), code


def error_response(msg, code=400):
    return jsonify({"status": "error", "data": None, "error": msg}), code


@routes_bp.errorhandler(NewScreensError)
def handle_app_error(e):
    if e.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
    return error_response(e.message, e.status_code)


@routes_bp.app_errorhandler(RequestEntityTooLarge)
def handle_too_large(e):
    return error_response("Image too large", 413)


def current_owner():
    return request.headers.get(OWNER_HEADER) or None


def json_body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def id_list(body):
    ids = body.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("No ids provided")
    try:
        return [int(i) for i in ids]
    except (TypeError, ValueError) as e:
        raise ValidationError("ids must be integers") from e


def as_int(value, name):
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer") from e


def optional_text(fields, name):
    value = fields.get(name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def image_store():
    return current_app.extensions["image_store"]


def analyzer():
    return current_app.extensions["vision_analyzer"]


def screenshot_payload(shot):
    data = shot.to_dict()
    data["fileUrl"] = url_for("routes_bp.serve_screenshot_file", screenshot_id=shot.id, _external=True)
    return data


@routes_bp.route("/api/screenshots/ingest", methods=["POST"])
def ingest_screenshot():
    if "file" in request.files:
        file = request.files["file"]
        if file.filename == "":
            raise ValidationError("No file selected")
        if file.mimetype and not file.mimetype.startswith("image/"):
            raise ValidationError("Unsupported file type")
        image, fields = file.read(), request.form
        mime_type = file.mimetype or "image/png"
    else:
        fields = json_body()
        image = fields.get("image")
        if not image:
            raise ValidationError("No image provided")
        mime_type = "image/png"

    target = UNSET
    if "targetFolderId" in fields:
        raw = fields.get("targetFolderId")
        target = None if raw is None or str(raw).strip().lower() in ROOT_FOLDER_VALUES else raw
    instruction = optional_text(fields, "instruction")

    owner_id = current_owner()
    db = SessionLocal()
    try:
        publish = as_bool(fields["publish"]) if "publish" in fields else publishing_enabled(db, owner_id)
        pipeline = IngestionPipeline(
            db, image_store(), analyzer(),
            owner_id=owner_id,
            on_persisted=current_app.extensions.get("publish_dispatch"),
        )
        result = pipeline.ingest(
            image,
            target_folder_id=target,
            instruction=instruction,
            publish=publish,
            mime_type=mime_type,
        )
        data = result.to_dict()
        data["screenshot"] = screenshot_payload(result.screenshot)
        return success_response(data, 201)
    finally:
        db.close()


@routes_bp.route("/api/analyze", methods=["POST"])
def analyze_image():
    body = json_body()
    image_bytes = decode_image_payload(body.get("image"))
    owner_id = current_owner()
    db = SessionLocal()
    try:
        instruction = optional_text(body, "instruction")
        if not instruction and body.get("folderId") is not None:
            folder = catalog.get_folder(db, as_int(body["folderId"], "folderId"), owner_id=owner_id)
            instruction = folder.custom_prompt
        if not instruction:
            instruction = catalog.get_setting(db, "customPrompt", owner_id=owner_id)
        model = catalog.get_setting(db, "gemini_model", owner_id=owner_id)

        result = analyzer().analyze(image_bytes, instruction, model=model)
        record_usage(db, result.usage, "analyze", owner_id=owner_id)
        cost = compute_cost(result.usage.model, result.usage.prompt_tokens, result.usage.output_tokens)
        data = result.to_dict()
        data["usage"].update(cost.to_dict())
        return success_response(data)
    finally:
        db.close()


@routes_bp.route("/api/screenshots", methods=["GET"])
def list_screenshots():
    folder_id = request.args.get("folderId", type=int)
    db = SessionLocal()
    try:
        shots = catalog.list_screenshots(
            db, query=request.args.get("q"), folder_id=folder_id, owner_id=current_owner()
        )
        return success_response([screenshot_payload(s) for s in shots])
    finally:
        db.close()


@routes_bp.route("/api/screenshots/<int:screenshot_id>", methods=["GET"])
def get_screenshot_details(screenshot_id):
    db = SessionLocal()
    try:
        shot = catalog.get_screenshot(db, screenshot_id, owner_id=current_owner())
        data = screenshot_payload(shot)
        try:
            data["embeddedDescription"] = read_description(read_stored(image_store(), shot.filepath))
        except (StorageError, ValidationError) as e:
            logger.warning(f"Screenshot {shot.id} file unavailable: {e.message}")
            data["embeddedDescription"] = None
        return success_response(data)
    finally:
        db.close()


@routes_bp.route("/api/screenshots/<int:screenshot_id>/file", methods=["GET"])
def serve_screenshot_file(screenshot_id):
    db = SessionLocal()
    try:
        shot = catalog.get_screenshot(db, screenshot_id, owner_id=current_owner())
    finally:
        db.close()
    data = read_stored(image_store(), shot.filepath)
    name = StoredPath.parse(shot.filepath).basename()
    return send_file(io.BytesIO(data), mimetype=content_type_for(name), download_name=name,
                     max_age=31536000)


@routes_bp.route("/api/screenshots/<int:screenshot_id>", methods=["DELETE"])
def remove_screenshot(screenshot_id):
    db = SessionLocal()
    try:
        return success_response(delete_screenshot(db, image_store(), screenshot_id, owner_id=current_owner()))
    finally:
        db.close()


@routes_bp.route("/api/screenshots/bulk-delete", methods=["POST"])
def bulk_delete_screenshots():
    ids = id_list(json_body())
    db = SessionLocal()
    try:
        return success_response(bulk_delete(db, image_store(), ids, owner_id=current_owner()))
    finally:
        db.close()


@routes_bp.route("/api/screenshots/bulk-download", methods=["POST"])
def bulk_download_screenshots():
    ids = id_list(json_body())
    db = SessionLocal()
    try:
        archive = bulk_download(db, image_store(), ids, owner_id=current_owner())
    finally:
        db.close()
    return send_file(archive, mimetype="application/zip", as_attachment=True,
                     download_name=f"screenshots-{int(time.time() * 1000)}.zip")


@routes_bp.route("/api/ai-search", methods=["POST"])
def ai_search():
    query = json_body().get("query")
    db = SessionLocal()
    try:
        result = semantic_search(db, analyzer(), query, owner_id=current_owner())
        return success_response(result.to_dict())
    finally:
        db.close()


@routes_bp.route("/api/folders", methods=["GET"])
def list_folders():
    db = SessionLocal()
    try:
        return success_response([f.to_dict() for f in catalog.list_folders(db, owner_id=current_owner())])
    finally:
        db.close()


@routes_bp.route("/api/folders", methods=["POST"])
def create_folder():
    body = json_body()
    path = catalog.normalize_folder_path(body.get("path"))
    image_store().provision(folder_key(path))
    db = SessionLocal()
    try:
        folder = catalog.create_folder(db, path, name=body.get("name"), owner_id=current_owner())
        return success_response(folder.to_dict(), 201)
    finally:
        db.close()


@routes_bp.route("/api/folders", methods=["PATCH"])
def update_folder():
    body = json_body()
    owner_id = current_owner()
    db = SessionLocal()
    try:
        if body.get("deselectAll"):
            catalog.select_root(db, owner_id=owner_id)
            return success_response({"selected": None})
        if body.get("id") is None:
            raise ValidationError("No id provided")
        folder_id = as_int(body["id"], "id")

        folder = catalog.get_folder(db, folder_id, owner_id=owner_id)
        if "customPrompt" in body:
            folder = catalog.update_folder_prompt(db, folder_id, body["customPrompt"], owner_id=owner_id)
        if "isSelected" in body:
            if as_bool(body["isSelected"]):
                folder = catalog.select_folder(db, folder_id, owner_id=owner_id)
            elif folder.is_selected:
                catalog.select_root(db, owner_id=owner_id)
                db.refresh(folder)
        return success_response(folder.to_dict())
    finally:
        db.close()


@routes_bp.route("/api/folders", methods=["DELETE"])
def delete_folder():
    folder_id = request.args.get("id", type=int)
    if folder_id is None:
        raise ValidationError("No id provided")
    db = SessionLocal()
    try:
        released = catalog.delete_folder(db, folder_id, owner_id=current_owner())
        return success_response({"deleted": folder_id, "screenshotsMovedToRoot": released})
    finally:
        db.close()


@routes_bp.route("/api/folders/migrate-paths", methods=["POST"])
def migrate_folder_paths():
    db = SessionLocal()
    try:
        results = catalog.migrate_folder_paths(db, owner_id=current_owner())
        migrated = sum(1 for r in results if r["migrated"])
        logger.info(f"Folder path migration: {migrated} of {len(results)} updated")
        return success_response({"migrated": migrated, "results": results})
    finally:
        db.close()


@routes_bp.route("/api/settings", methods=["GET"])
def get_settings():
    owner_id = current_owner()
    db = SessionLocal()
    try:
        data = catalog.get_settings(db, owner_id=owner_id)
        data["isDefault"] = catalog.is_default_setting(db, "customPrompt", owner_id=owner_id)
        data["defaultInstruction"] = DEFAULT_INSTRUCTION
        return success_response(data)
    finally:
        db.close()


@routes_bp.route("/api/settings", methods=["POST"])
def save_settings():
    body = json_body()
    unknown = set(body) - set(catalog.SETTING_DEFAULTS)
    if unknown:
        raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    owner_id = current_owner()
    db = SessionLocal()
    try:
        for key, value in body.items():
            if key == "wordpress_auto_upload" and value is not None:
                value = "true" if as_bool(value) else "false"
            catalog.set_setting(db, key, value, owner_id=owner_id)
        return success_response({"isDefault": catalog.is_default_setting(db, "customPrompt", owner_id=owner_id)})
    finally:
        db.close()


@routes_bp.route("/api/usage", methods=["GET"])
def get_usage():
    limit = max(1, min(request.args.get("limit", default=100, type=int), 1000))
    db = SessionLocal()
    try:
        return success_response([r.to_dict() for r in list_usage(db, owner_id=current_owner(), limit=limit)])
    finally:
        db.close()


@routes_bp.route("/api/wordpress/upload", methods=["POST"])
def wordpress_upload():
    screenshot_id = json_body().get("screenshotId")
    if screenshot_id is None:
        raise ValidationError("Screenshot ID is required")
    db = SessionLocal()
    try:
        result = publish_screenshot(
            db, image_store(), as_int(screenshot_id, "screenshotId"), owner_id=current_owner()
        )
        return success_response(result)
    finally:
        db.close()


@routes_bp.route("/api/wordpress/bulk-upload", methods=["POST"])
def wordpress_bulk_upload():
    ids = id_list(json_body())
    db = SessionLocal()
    try:
        return success_response(bulk_publish(db, image_store(), ids, owner_id=current_owner()))
    finally:
        db.close()


@routes_bp.route("/api/wordpress/test", methods=["POST"])
def wordpress_test():
    body = json_body()
    if not body.get("siteUrl") or not body.get("apiKey"):
        raise ValidationError("Site URL and API key are required")
    result = WordPressClient(body["siteUrl"], body["apiKey"]).test_connection()
    return success_response({k: result.get(k) for k in ("message", "site", "url", "version")})


@routes_bp.route("/api/gemini/test", methods=["POST"])
def gemini_test():
    db = SessionLocal()
    try:
        model = json_body().get("model") or catalog.get_setting(db, "gemini_model", owner_id=current_owner())
    finally:
        db.close()
    reply = analyzer().test_connection(model=model)
    return success_response({"model": model, "reply": reply})


@routes_bp.route("/", methods=["GET"])
def health_check():
    return success_response({"message": "NewScreens API is running"})
