# backend/storage.py
# Lưu generation trong bộ nhớ process (không có DB).

from datetime import datetime, timezone
from typing import Dict, List, Optional

from shared.schema import Generation

from .utils import gen_job_id


class MemStorage:
    def __init__(self) -> None:
        self._generations: Dict[str, Generation] = {}

    def create_generation(
        self,
        image_url: str,
        original_image_url: str,
        prompt: str,
        style: str,
    ) -> Generation:
        generation = Generation(
            id=gen_job_id(),
            image_url=image_url,
            original_image_url=original_image_url,
            prompt=prompt,
            style=style,
            created_at=datetime.now(timezone.utc),
        )
        self._generations[generation.id] = generation
        return generation

    def get_generations(self, limit: int = 50) -> List[Generation]:
        """Mới nhất trước (dict giữ thứ tự insert)."""
        items = list(self._generations.values())
        items.reverse()
        return items[:limit]

    def get_generation(self, generation_id: str) -> Optional[Generation]:
        return self._generations.get(generation_id)


storage = MemStorage()
