"""
Image normalization before upload.

Gemini / Veo reject oversized inline payloads, so every user- or
pipeline-supplied still is downscaled and re-encoded as JPEG first.
"""

import base64
import binascii
import io
from typing import Union

from PIL import Image, UnidentifiedImageError

from schemas import AssetSource, ImageAsset
from utils.logger import get_logger

logger = get_logger("image_utils")

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

ImageInput = Union[ImageAsset, str, bytes]


def _pil_quality(quality: float) -> int:
    """0.0~1.0 quality factor -> Pillow's 1~95 JPEG scale."""
    return max(1, min(95, int(round(quality * 100))))


def encode_jpeg(image: Image.Image, quality: float) -> bytes:
    """Encode a Pillow image as JPEG, flattening alpha/palette modes onto white."""
    if image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        image = background
    elif image.mode != "RGB":
        image = image.convert("RGB")

    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=_pil_quality(quality))
    return buf.getvalue()


def _unpack(image: ImageInput):
    """Return (raw bytes, mime hint, source) for any accepted input form."""
    if isinstance(image, ImageAsset):
        return image.data, image.mime_type, image.source
    if isinstance(image, str):
        header, _, payload = image.partition(",")
        if not payload:
            header, payload = "", image
        try:
            raw = base64.b64decode(payload)
        except (binascii.Error, ValueError):
            raw = image.encode("utf-8")
        return raw, header, AssetSource.UPLOADED
    return bytes(image), "", AssetSource.UPLOADED


def _guess_mime(raw: bytes, hint: str) -> str:
    if "image/png" in (hint or "") or raw.startswith(_PNG_MAGIC):
        return "image/png"
    return "image/jpeg"


def compress_image(image: ImageInput, max_dimension: int = 1024, quality: float = 0.8) -> ImageAsset:
    """
    Downscale so the longest side fits `max_dimension`, re-encode as JPEG.

    Never raises. If the source cannot be decoded the original bytes are
    forwarded unchanged with a best-effort mime guess.

    Args:
        image: ImageAsset, data URL / base64 string, or raw bytes
        max_dimension: bound for both width and height
        quality: JPEG quality factor (0.0~1.0)

    Returns:
        ImageAsset
    """
    raw, hint, source = _unpack(image)
    if not raw:
        return ImageAsset(data=b"", mime_type="", source=source)

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            width, height = img.size
            if width > max_dimension or height > max_dimension:
                ratio = min(max_dimension / width, max_dimension / height)
                width = max(1, round(width * ratio))
                height = max(1, round(height * ratio))
                img = img.resize((width, height), Image.LANCZOS)
            data = encode_jpeg(img, quality)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning(f"Image decode failed, forwarding original bytes: {e}")
        return ImageAsset(data=raw, mime_type=_guess_mime(raw, hint), source=source)

    return ImageAsset(data=data, mime_type="image/jpeg", source=source)
