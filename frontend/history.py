"""Capped, newest-first history of successful generations."""

from __future__ import annotations

import json
import logging
import threading
from typing import Dict, List, Optional, Protocol

import redis
from pydantic import ValidationError

from config.settings import settings
from shared.schema import Generation

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryBackend:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisBackend:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str = settings.REDIS_URL) -> "RedisBackend":
        return cls(redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        value = self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def build_backend(kind: str = settings.HISTORY_BACKEND) -> KeyValueBackend:
    if kind == "memory":
        return MemoryBackend()
    if kind == "redis":
        return RedisBackend.from_url(settings.REDIS_URL)
    raise ValueError(f"Unknown history backend: {kind!r}")


class HistoryStore:
    """
    Lưu tối đa ``max_items`` generation gần nhất dưới 1 key cố định.
    Dữ liệu hỏng hoặc backend lỗi (Redis down...) được coi là history rỗng;
    lỗi khi ghi chỉ log, history trong bộ nhớ vẫn dùng được.

    ``add`` chạy trên thread của event loop, ``clear`` trên thread UI: mọi thay đổi đi qua ``_lock``.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        key: str = settings.HISTORY_KEY,
        max_items: int = settings.MAX_HISTORY_ITEMS,
    ) -> None:
        self.backend = backend
        self.key = key
        self.max_items = max_items
        self._items: List[Generation] = []
        self._lock = threading.Lock()

    @property
    def items(self) -> List[Generation]:
        return list(self._items)

    def load(self) -> List[Generation]:
        try:
            raw = self.backend.get(self.key)
        except redis.RedisError as e:
            logger.warning("Failed to read history %r, starting empty: %s", self.key, e)
            raw = None

        items: List[Generation] = []
        if raw:
            try:
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("history payload is not a list")
                items = [Generation.model_validate(entry) for entry in parsed]
            except (ValueError, ValidationError) as e:
                logger.warning("Failed to load history from %r, starting empty: %s", self.key, e)
                items = []

        with self._lock:
            self._items = items[: self.max_items]
        return self.items

    def add(self, generation: Generation) -> List[Generation]:
        with self._lock:
            items = [generation] + [item for item in self._items if item.id != generation.id]
            self._items = items[: self.max_items]
            self._save()
        return self.items

    def get(self, generation_id: str) -> Optional[Generation]:
        for item in self._items:
            if item.id == generation_id:
                return item
        return None

    def clear(self) -> None:
        with self._lock:
            self._items = []
            try:
                self.backend.delete(self.key)
            except redis.RedisError as e:
                logger.warning("Failed to delete history %r: %s", self.key, e)

    def _save(self) -> None:
        payload = json.dumps([item.to_wire() for item in self._items])
        try:
            self.backend.set(self.key, payload)
        except redis.RedisError as e:
            logger.warning("Failed to save history %r: %s", self.key, e)
