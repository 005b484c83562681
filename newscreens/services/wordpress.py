"""Publishing screenshots to a WordPress media library.

Talks to the NewScreens Media Uploader plugin REST API. Publishing is
idempotent per screenshot: once a URL is recorded, later requests return it
without contacting WordPress again.
"""
import requests

from ..utils.errors import NotFoundError, PublishError, ValidationError
from ..utils.logging import logger
from . import catalog
from .storage import StoredPath, content_type_for, read_stored

API_NAMESPACE = "/wp-json/newscreens/v1"
API_KEY_HEADER = "X-NewScreens-API-Key"
REQUEST_TIMEOUT = 30


class WordPressClient:
    def __init__(self, site_url, api_key, session=None):
        self.site_url = site_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()

    def endpoint(self, path):
        return f"{self.site_url}{API_NAMESPACE}{path}"

    def _parse(self, response):
        try:
            result = response.json()
        except ValueError as e:
            raise PublishError(f"Invalid JSON response from WordPress: {response.text[:500]}") from e
        if not response.ok or not isinstance(result, dict) or result.get("success") is False:
            message = result.get("message") if isinstance(result, dict) else None
            raise PublishError(message or f"WordPress request failed with status {response.status_code}")
        return result

    def test_connection(self):
        try:
            response = self.session.get(
                self.endpoint("/test"), headers={API_KEY_HEADER: self.api_key}, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise PublishError(f"Connection failed: {e}") from e
        return self._parse(response)

    def upload_image(self, file_bytes, filename, external_id, title=None, caption=None,
                     alt_text=None, description=None, keywords=None):
        data = {"external_id": str(external_id)}
        optional = {"title": title, "caption": caption, "alt_text": alt_text, "description": description}
        data.update({k: v for k, v in optional.items() if v})
        if keywords:
            data["keywords"] = ", ".join(keywords)

        logger.info(f"WordPress upload {filename} ({len(file_bytes)} bytes) external_id={external_id}")
        try:
            response = self.session.post(
                self.endpoint("/upload"),
                headers={API_KEY_HEADER: self.api_key},
                data=data,
                files={"file": (filename, file_bytes, content_type_for(filename))},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise PublishError(f"Upload failed: {e}") from e
        result = self._parse(response)
        if not result.get("url"):
            raise PublishError("WordPress response did not include a URL")
        return result


def create_wordpress_client(db, owner_id=None):
    site_url = catalog.get_setting(db, "wordpress_site_url", owner_id=owner_id)
    api_key = catalog.get_setting(db, "wordpress_api_key", owner_id=owner_id)
    if not site_url or not api_key:
        return None
    return WordPressClient(site_url, api_key)


def publishing_enabled(db, owner_id=None):
    auto = catalog.get_setting(db, "wordpress_auto_upload", owner_id=owner_id)
    return str(auto).lower() == "true"


def _published(shot, cached):
    return {
        "id": shot.id,
        "success": True,
        "cached": cached,
        "wpImageUrl": shot.wp_image_url,
        "wpAttachmentId": shot.wp_attachment_id,
    }


def _upload(db, store, client, shot, owner_id):
    file_bytes = read_stored(store, shot.filepath)
    result = client.upload_image(
        file_bytes,
        filename=StoredPath.parse(shot.filepath).basename(),
        external_id=shot.id,
        title=shot.ai_suggested_name or shot.filename,
        caption=shot.description,
        alt_text=shot.description,
        description=shot.description,
        keywords=shot.keyword_list,
    )
    attachment_id = result.get("attachment_id")
    shot = catalog.set_published(db, shot.id, result["url"], attachment_id, owner_id=owner_id)
    logger.info(f"Published screenshot {shot.id} to {shot.wp_image_url}")
    return _published(shot, cached=False)


def publish_screenshot(db, store, screenshot_id, owner_id=None, client=None):
    shot = catalog.get_screenshot(db, screenshot_id, owner_id=owner_id)
    if shot.wp_image_url:
        return _published(shot, cached=True)
    client = client or create_wordpress_client(db, owner_id=owner_id)
    if client is None:
        raise ValidationError("WordPress not configured")
    return _upload(db, store, client, shot, owner_id)


def bulk_publish(db, store, ids, owner_id=None, client=None):
    """Publish each screenshot in turn; one failure never stops the others."""
    client = client or create_wordpress_client(db, owner_id=owner_id)
    if client is None:
        raise ValidationError("WordPress not configured")
    screenshots = catalog.get_screenshots(db, ids, owner_id=owner_id)
    if not screenshots:
        raise NotFoundError("No screenshots found")

    results = []
    for shot in screenshots:
        if shot.wp_image_url:
            results.append(_published(shot, cached=True))
            continue
        try:
            results.append(_upload(db, store, client, shot, owner_id))
        except Exception as e:
            logger.exception(f"Failed to publish screenshot {shot.id}")
            message = getattr(e, "message", None) or str(e) or "Upload failed"
            results.append({"id": shot.id, "success": False, "error": message})

    uploaded = sum(1 for r in results if r["success"])
    return {
        "total": len(screenshots),
        "uploaded": uploaded,
        "failed": len(screenshots) - uploaded,
        "results": results,
    }
