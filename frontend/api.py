from typing import List, Optional

import requests

from config.settings import settings
from shared.schema import Generation


def fetch_generations(limit: int = 5, base_url: str = settings.BACKEND_URL) -> List[Generation]:
    """Gọi GET /api/generations -> danh sách generation mới nhất trên server"""
    resp = requests.get(
        f"{base_url.rstrip('/')}/api/generations",
        params={"limit": limit},
        timeout=10,
    )
    resp.raise_for_status()
    return [Generation.model_validate(item) for item in resp.json()]


def fetch_generation(generation_id: str, base_url: str = settings.BACKEND_URL) -> Optional[Generation]:
    """Gọi GET /api/generations/{id}; 404 -> None"""
    resp = requests.get(f"{base_url.rstrip('/')}/api/generations/{generation_id}", timeout=10)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    return Generation.model_validate(resp.json())
