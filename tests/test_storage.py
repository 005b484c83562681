import io

import pytest
from botocore.exceptions import ClientError

from newscreens.services.storage import (
    LegacyAbsolutePath,
    LocalImageStore,
    RelativeKey,
    S3ImageStore,
    StoredPath,
    content_type_for,
    create_image_store,
    delete_stored,
    folder_key,
    read_stored,
)
from newscreens.utils.errors import StorageError, StorageNotFoundError, ValidationError


def test_local_put_get_delete(store, png_bytes):
    store.put("work/shot.png", png_bytes)
    assert store.get("work/shot.png") == png_bytes

    store.delete("work/shot.png")
    with pytest.raises(StorageNotFoundError):
        store.get("work/shot.png")


def test_local_delete_missing_is_tolerated(store):
    store.delete("never/existed.png")


@pytest.mark.parametrize("key", ["../outside.png", "a/../../outside.png", "/etc/passwd", "C:\\temp\\x.png", ""])
def test_local_rejects_keys_outside_base(store, key):
    with pytest.raises(ValidationError):
        store.put(key, b"data")


def test_local_provision_creates_directory(store, tmp_path):
    store.provision("Invoices")
    assert (tmp_path / "screenshots" / "Invoices").is_dir()


def test_local_write_failure_is_storage_error(store, tmp_path):
    (tmp_path / "screenshots" / "blocked").write_bytes(b"a file, not a directory")
    with pytest.raises(StorageError):
        store.put("blocked/shot.png", b"data")


@pytest.mark.parametrize("value,expected", [
    ("work/shot.png", RelativeKey("work/shot.png")),
    ("shot.png", RelativeKey("shot.png")),
    ("/screenshots/work/shot.png", RelativeKey("work/shot.png")),
    ("/home/me/Pictures/shot.png", LegacyAbsolutePath("/home/me/Pictures/shot.png")),
    ("C:\\Users\\me\\SE Ranking\\shot.png", LegacyAbsolutePath("C:\\Users\\me\\SE Ranking\\shot.png")),
])
def test_stored_path_parse(value, expected):
    assert StoredPath.parse(value) == expected


def test_legacy_basename_handles_windows_separators():
    assert StoredPath.parse("C:\\Users\\me\\SE Ranking\\shot.png").basename() == "shot.png"
    assert folder_key("C:\\Users\\me\\SE Ranking") == "SE Ranking"
    assert folder_key("Invoices") == "Invoices"


def test_read_and_delete_legacy_absolute_path(store, tmp_path, png_bytes):
    legacy = tmp_path / "old-library" / "shot.png"
    legacy.parent.mkdir()
    legacy.write_bytes(png_bytes)

    assert read_stored(store, str(legacy)) == png_bytes
    delete_stored(store, str(legacy))
    assert not legacy.exists()
    delete_stored(store, str(legacy))
    with pytest.raises(StorageNotFoundError):
        read_stored(store, str(legacy))


def test_read_relative_key_goes_through_store(store, png_bytes):
    store.put("a/b.png", png_bytes)
    assert read_stored(store, "/screenshots/a/b.png") == png_bytes
    assert read_stored(store, "a/b.png") == png_bytes


def test_content_type_for():
    assert content_type_for("x.PNG") == "image/png"
    assert content_type_for("x.jpeg") == "image/jpeg"
    assert content_type_for("x.bin") == "application/octet-stream"


class FakeS3:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)][0])}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


def test_s3_store_maps_keys_without_leading_slash(png_bytes):
    fake = FakeS3()
    s3 = S3ImageStore("shots", client=fake)

    s3.put("/work/shot.png", png_bytes)

    assert ("shots", "work/shot.png") in fake.objects
    assert fake.objects[("shots", "work/shot.png")][1] == "image/png"
    assert s3.get("work/shot.png") == png_bytes
    s3.delete("work/shot.png")
    s3.delete("work/shot.png")
    with pytest.raises(StorageNotFoundError):
        s3.get("work/shot.png")


def test_s3_other_client_errors_are_storage_errors():
    class Denied(FakeS3):
        def put_object(self, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")

    with pytest.raises(StorageError):
        S3ImageStore("shots", client=Denied()).put("x.png", b"data")


def test_create_image_store_selects_backend(tmp_path):
    local = create_image_store({"STORAGE_BACKEND": "local", "SCREENSHOTS_DIR": str(tmp_path / "s")})
    assert isinstance(local, LocalImageStore)
    with pytest.raises(ValueError):
        create_image_store({"STORAGE_BACKEND": "ftp"})
