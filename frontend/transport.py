import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from config.settings import settings
from shared.schema import Generation, GenerationRequest

from .errors import NetworkError, RequestValidationError, ServerError

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"


def _error_message(response: httpx.Response) -> str:
    """Lấy message lỗi từ body: message / error / detail, nếu không có thì HTTP <status>."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def parse_generation(body: Any) -> Generation:
    """
    Backend có thể trả {"success": true, "data": {...}} hoặc trả thẳng các field.
    """
    if isinstance(body, dict) and "success" in body:
        if not body.get("success"):
            raise ServerError(str(body.get("error") or "Generation failed"))
        body = body.get("data")

    try:
        return Generation.model_validate(body)
    except ValidationError as e:
        raise ServerError("Invalid response from server") from e


class HttpGenerationTransport:
    """
    Gửi 1 POST /api/generate cho mỗi attempt.
    Cancel bằng cách cancel task đang await send() (asyncio.CancelledError đi thẳng ra ngoài).
    """

    def __init__(
        self,
        base_url: str = settings.BACKEND_URL,
        timeout: float = settings.REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = f"{base_url.rstrip('/')}{GENERATE_PATH}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, request: GenerationRequest) -> Generation:
        payload: Dict[str, Any] = request.to_wire()

        try:
            r = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("POST %s failed: %s", self.url, e)
            raise NetworkError() from e

        if r.status_code in (400, 422):
            raise RequestValidationError(_error_message(r))
        if r.is_error:
            logger.warning("POST %s returned %s: %s", self.url, r.status_code, r.text[:300])
            raise ServerError(_error_message(r), status_code=r.status_code)

        try:
            body = r.json()
        except ValueError as e:
            raise ServerError("Invalid response from server", status_code=r.status_code) from e
        return parse_generation(body)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpGenerationTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
