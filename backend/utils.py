import time
import uuid

# Ảnh placeholder theo style (backend mock không có model thật)
STYLE_IMAGE_MAP = {
    "editorial": "https://images.unsplash.com/photo-1558618666-fcd25c85cd64?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
    "streetwear": "https://images.unsplash.com/photo-1506905925346-21bda4d32df4?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
    "vintage": "https://images.unsplash.com/photo-1541961017774-22349e4a1262?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
    "minimalist": "https://images.unsplash.com/photo-1513475382585-d06e58bcb0e0?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
    "cyberpunk": "https://images.unsplash.com/photo-1518709268805-4e9042af2176?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
    "watercolor": "https://images.unsplash.com/photo-1460661419201-fd4cecdf8a8b?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=600",
}

ALLOWED_UPLOAD_TYPES = ("image/png", "image/jpeg", "image/jpg")


def placeholder_image_url(style: str) -> str:
    return STYLE_IMAGE_MAP[style]


def gen_job_id() -> str:
    return str(uuid.uuid4())


def get_timestamp_ms() -> int:
    return int(time.time() * 1000)
