# shared/data_url.py
# Ảnh đi trên wire dưới dạng data URL: data:<mime>;base64,<payload>

import base64
import binascii
from typing import Tuple

DATA_URL_PREFIX = "data:"


def build_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"{DATA_URL_PREFIX}{mime_type};base64,{encoded}"


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """Return (mime_type, raw bytes); ValueError if it is not a base64 data URL."""
    if not data_url.startswith(DATA_URL_PREFIX) or "," not in data_url:
        raise ValueError("not a data URL")

    header, payload = data_url[len(DATA_URL_PREFIX):].split(",", 1)
    mime_type, _, encoding = header.partition(";")
    if encoding != "base64" or not mime_type:
        raise ValueError("only base64 data URLs are supported")

    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError("invalid base64 payload") from e
