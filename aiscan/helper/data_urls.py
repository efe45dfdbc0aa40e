import base64
import binascii
import io
import re
from typing import Optional, Tuple

from PIL import Image

from aiscan.core.exceptions import ValidationError

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[\w.+-]+=[\w.+-]+)*);base64,(?P<data>.*)$", re.S)

IMAGE_EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "WEBP": "webp", "GIF": "gif"}


def decode_base64_payload(value: str) -> Tuple[Optional[str], bytes]:
    """
    Accepts either a `data:<mime>;base64,<payload>` URL or a bare base64
    string. Returns (mime type or None, decoded bytes).
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Empty base64 payload")
    mime = None
    payload = value.strip()
    match = _DATA_URL_RE.match(payload)
    if match:
        mime = match.group("mime")
        payload = match.group("data")
    elif payload.startswith("data:"):
        raise ValidationError("Malformed data URL")
    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Invalid base64 payload") from e
    if not data:
        raise ValidationError("Empty base64 payload")
    return mime, data


def decode_image(value: str) -> Tuple[bytes, str]:
    """Decoded image bytes plus the file extension matching the real format."""
    _, data = decode_base64_payload(value)
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            fmt = img.format
    except (OSError, ValueError, SyntaxError) as e:
        raise ValidationError("Invalid image data") from e
    ext = IMAGE_EXTENSIONS.get(fmt)
    if ext is None:
        raise ValidationError(f"Unsupported image format: {fmt}")
    return data, ext
