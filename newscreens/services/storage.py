"""Image storage backends and the stored-path resolver.

Two interchangeable backends sit behind ``ImageStore``: a directory on local
disk and an S3-compatible bucket. Which one is active is decided once, at app
start, by ``create_image_store``. Pipeline code only sees the interface.

Screenshot and folder paths in the database come in two shapes. New rows hold
a backend-relative key (``folder/file.png``); rows written by old releases may
hold an absolute filesystem path or a web path under ``/screenshots/``.
``StoredPath.parse`` is the single place that tells them apart.
"""
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.errors import StorageError, StorageNotFoundError, ValidationError
from ..utils.logging import logger

WEB_PREFIX = "/screenshots/"
_WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[\\/]")

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


def content_type_for(name):
    return CONTENT_TYPES.get(os.path.splitext(name)[1].lower(), "application/octet-stream")


def path_basename(value):
    """Last segment of a path, splitting on both / and \\."""
    segments = [s for s in re.split(r"[/\\]", value) if s]
    return segments[-1] if segments else value


def is_legacy_absolute(value):
    return _WINDOWS_ABSOLUTE.match(value) is not None or value.startswith("\\\\") or os.path.isabs(value)


@dataclass(frozen=True)
class RelativeKey:
    key: str

    def basename(self):
        return path_basename(self.key)


@dataclass(frozen=True)
class LegacyAbsolutePath:
    path: str

    def basename(self):
        return path_basename(self.path)


class StoredPath:
    @staticmethod
    def parse(value):
        """Interpret a persisted filepath as a RelativeKey or a LegacyAbsolutePath."""
        if not value:
            raise ValidationError("Empty stored path")
        if value.startswith(WEB_PREFIX):
            return RelativeKey(value[len(WEB_PREFIX):])
        if is_legacy_absolute(value):
            return LegacyAbsolutePath(value)
        return RelativeKey(value.lstrip("/"))


def folder_key(folder_path):
    """Storage prefix for a folder, whatever format its path was saved in."""
    parsed = StoredPath.parse(folder_path)
    if isinstance(parsed, LegacyAbsolutePath):
        return parsed.basename()
    return parsed.key.strip("/")


class ImageStore(ABC):
    @abstractmethod
    def put(self, key, data, content_type="image/png"):
        ...

    @abstractmethod
    def get(self, key):
        """Return the bytes stored under key, or raise StorageNotFoundError."""

    @abstractmethod
    def delete(self, key):
        """Remove key. Absent keys are not an error."""

    def provision(self, prefix):
        """Prepare a location for a new folder."""


class LocalImageStore(ImageStore):
    def __init__(self, base_dir):
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def _resolve(self, key):
        if not key or is_legacy_absolute(key):
            raise ValidationError(f"Invalid storage key: {key!r}")
        full = os.path.abspath(os.path.join(self.base_dir, key))
        if os.path.commonpath([self.base_dir, full]) != self.base_dir or full == self.base_dir:
            raise ValidationError(f"Storage key escapes base directory: {key!r}")
        return full

    def put(self, key, data, content_type="image/png"):
        path = self._resolve(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.info(f"Stored {len(data)} bytes at {path}")

    def get(self, key):
        path = self._resolve(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"File not found: {key}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def delete(self, key):
        path = self._resolve(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning(f"Delete of missing file ignored: {path}")
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def provision(self, prefix):
        path = self._resolve(prefix)
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create folder {prefix}: {e}") from e


class S3ImageStore(ImageStore):
    """S3-compatible object storage (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(self, bucket, endpoint_url=None, access_key_id=None, secret_access_key=None,
                 region="auto", client=None):
        if not bucket:
            raise ValidationError("S3_BUCKET is required for the s3 storage backend")
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    @staticmethod
    def _object_name(key):
        name = key.lstrip("/")
        if not name:
            raise ValidationError("Empty storage key")
        return name

    def put(self, key, data, content_type="image/png"):
        name = self._object_name(key)
        try:
            self.client.put_object(Bucket=self.bucket, Key=name, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload {name}: {e}") from e
        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{name}")

    def get(self, key):
        name = self._object_name(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=name)
            return response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise StorageNotFoundError(f"Object not found: {name}") from e
            raise StorageError(f"Failed to fetch {name}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to fetch {name}: {e}") from e

    def delete(self, key):
        name = self._object_name(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=name)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {name}: {e}") from e


def create_image_store(config):
    backend = (config.get("STORAGE_BACKEND") or "local").lower()
    if backend == "s3":
        logger.info(f"Using S3 storage, bucket {config.get('S3_BUCKET')}")
        return S3ImageStore(
            bucket=config.get("S3_BUCKET"),
            endpoint_url=config.get("S3_ENDPOINT") or None,
            access_key_id=config.get("S3_ACCESS_KEY_ID"),
            secret_access_key=config.get("S3_SECRET_ACCESS_KEY"),
            region=config.get("S3_REGION") or "auto",
        )
    if backend == "local":
        logger.info(f"Using local storage at {config['SCREENSHOTS_DIR']}")
        return LocalImageStore(config["SCREENSHOTS_DIR"])
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def read_stored(store, stored_path):
    """Read bytes for a persisted filepath in either format."""
    parsed = StoredPath.parse(stored_path)
    if isinstance(parsed, RelativeKey):
        return store.get(parsed.key)
    try:
        with open(parsed.path, "rb") as f:
            return f.read()
    except FileNotFoundError as e:
        raise StorageNotFoundError(f"File not found: {parsed.path}") from e
    except OSError as e:
        raise StorageError(f"Failed to read {parsed.path}: {e}") from e


def delete_stored(store, stored_path):
    parsed = StoredPath.parse(stored_path)
    if isinstance(parsed, RelativeKey):
        store.delete(parsed.key)
        return
    try:
        os.remove(parsed.path)
    except FileNotFoundError:
        logger.warning(f"Delete of missing legacy file ignored: {parsed.path}")
    except OSError as e:
        raise StorageError(f"Failed to delete {parsed.path}: {e}") from e
