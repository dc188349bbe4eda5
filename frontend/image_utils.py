"""Upload helpers: validation, resizing and data-URL encoding with Pillow."""

from __future__ import annotations

from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from config.settings import settings
from shared.data_url import build_data_url, parse_data_url
from shared.schema import UploadedFile

from .errors import UploadError

VALID_MIME_TYPES = ("image/png", "image/jpeg", "image/jpg")

_PIL_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
}


def validate_image_file(
    mime_type: str,
    size: int,
    max_size: int = settings.MAX_UPLOAD_BYTES,
) -> Optional[str]:
    """Return a user-facing error message, or None when the file is acceptable."""
    if mime_type not in VALID_MIME_TYPES:
        return "Please upload a PNG or JPG file"
    if size > max_size:
        return "File size must be less than 10MB"
    return None


def format_file_size(size: int) -> str:
    if size == 0:
        return "0 Bytes"

    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UploadError("Failed to process the image. Please try again.") from e
    return image


def get_image_dimensions(data: bytes) -> Tuple[int, int]:
    return _open(data).size


def resize_image(
    data: bytes,
    mime_type: str,
    max_width: int = settings.MAX_IMAGE_DIMENSION,
    max_height: int = settings.MAX_IMAGE_DIMENSION,
    quality: int = 90,
) -> bytes:
    """Shrink to fit inside max_width x max_height, keeping the aspect ratio."""
    image = _open(data)
    width, height = image.size
    if width <= max_width and height <= max_height:
        return data

    aspect_ratio = width / height
    if width > height:
        new_width = min(width, max_width)
        new_height = round(new_width / aspect_ratio)
    else:
        new_height = min(height, max_height)
        new_width = round(new_height * aspect_ratio)

    resized = image.resize((max(new_width, 1), max(new_height, 1)), Image.Resampling.LANCZOS)
    fmt = _PIL_FORMATS[mime_type]
    if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
        resized = resized.convert("RGB")

    out = BytesIO()
    if fmt == "JPEG":
        resized.save(out, format=fmt, quality=quality)
    else:
        resized.save(out, format=fmt)
    return out.getvalue()


def prepare_upload(name: str, mime_type: str, data: bytes) -> UploadedFile:
    """Validate an uploaded file, resize it if it is too large, and encode it."""
    error = validate_image_file(mime_type, len(data))
    if error:
        raise UploadError(error)

    width, height = get_image_dimensions(data)
    if width > settings.MAX_IMAGE_DIMENSION or height > settings.MAX_IMAGE_DIMENSION:
        data_for_url = resize_image(data, mime_type)
    else:
        data_for_url = data

    return UploadedFile(
        data_url=build_data_url(data_for_url, mime_type),
        original_name=name,
        size=len(data),
        mime_type=mime_type,
    )


def upload_from_data_url(data_url: str, name: str = "restored") -> UploadedFile:
    """Rebuild an UploadedFile from a stored data URL (history restore)."""
    try:
        mime_type, data = parse_data_url(data_url)
    except ValueError as e:
        raise UploadError("The original image can't be restored") from e

    if mime_type not in VALID_MIME_TYPES:
        raise UploadError("Please upload a PNG or JPG file")

    return UploadedFile(
        data_url=data_url,
        original_name=name,
        size=len(data),
        mime_type=mime_type,
    )
