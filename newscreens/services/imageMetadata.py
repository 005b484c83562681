import io
from PIL import Image as PILImage
from PIL.PngImagePlugin import PngInfo
from ..utils.logging import logger

EXIF_IMAGE_DESCRIPTION = 0x010E
PNG_DESCRIPTION_KEY = "Description"


def embed_description(image_bytes, description):
    """Return PNG bytes carrying description in EXIF ImageDescription.

    Never raises: if the image cannot be decoded or re-encoded the original
    bytes come back unchanged.
    """
    if not description:
        return image_bytes
    try:
        with PILImage.open(io.BytesIO(image_bytes)) as img:
            img.load()
            exif = img.getexif()
            exif[EXIF_IMAGE_DESCRIPTION] = description
            info = PngInfo()
            info.add_itxt(PNG_DESCRIPTION_KEY, description)
            if img.mode not in ("1", "L", "LA", "I", "P", "RGB", "RGBA"):
                img = img.convert("RGBA")
            out = io.BytesIO()
            img.save(out, format="PNG", exif=exif, pnginfo=info)
    except Exception as e:
        logger.warning(f"Metadata embed failed, keeping original bytes: {e}")
        return image_bytes
    logger.info(f"Embedded description into image ({len(image_bytes)} -> {out.tell()} bytes)")
    return out.getvalue()


def read_description(image_bytes):
    try:
        with PILImage.open(io.BytesIO(image_bytes)) as img:
            value = img.getexif().get(EXIF_IMAGE_DESCRIPTION)
            if value is None:
                value = img.info.get(PNG_DESCRIPTION_KEY)
    except Exception as e:
        logger.warning(f"Could not read image metadata: {e}")
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value
