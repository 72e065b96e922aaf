"""Decoding of client-rendered PNG frames."""

import base64
import binascii
import io

from PIL import Image, UnidentifiedImageError

from video_api.exceptions import InvalidRequestError
from video_api.schemas.export import PNG_DATA_URL_PREFIX


def decode_png_data_url(data_url: str) -> bytes:
    """Strip the data-URL prefix, base64-decode and check the bytes are a PNG."""
    if not data_url.startswith(PNG_DATA_URL_PREFIX):
        raise InvalidRequestError("must be PNG data URL")
    try:
        raw = base64.b64decode(data_url[len(PNG_DATA_URL_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError(f"PNG data URL is not valid base64: {e}") from e

    try:
        with Image.open(io.BytesIO(raw)) as img:
            if img.format != "PNG":
                raise InvalidRequestError(f"Expected PNG image, got {img.format}")
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidRequestError(f"PNG data URL does not contain a valid image: {e}") from e
    return raw
