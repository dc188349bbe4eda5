"""Bridge between the Streamlit script thread and the controller's event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, List, Optional

from shared.schema import Generation, GenerationRequest, Style, UploadedFile

from .controller import GenerationController, GenerationStatus, GenerationTransport, Phase
from .errors import UploadError
from .history import HistoryStore, build_backend
from .image_utils import upload_from_data_url
from .transport import HttpGenerationTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoredForm:
    """Form values taken back from a history item."""

    prompt: str
    style: Style
    upload: Optional[UploadedFile] = None


def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_forever()
    finally:
        loop.close()


def _stop_loop(loop: asyncio.AbstractEventLoop, transport: Any) -> None:
    # Chạy khi session bị GC mà chưa close() (Streamlit bỏ session_state)
    if loop.is_closed():
        return
    logger.info("Studio session dropped without close(), stopping its loop")
    aclose = getattr(transport, "aclose", None)
    if aclose is None:
        loop.call_soon_threadsafe(loop.stop)
        return
    future = asyncio.run_coroutine_threadsafe(aclose(), loop)
    future.add_done_callback(lambda _: loop.call_soon_threadsafe(loop.stop))


class StudioSession:
    """
    Một session UI = 1 event loop chạy trên thread nền + 1 controller + 1 history.
    UI thread chỉ đọc snapshot (immutable); mọi thay đổi state đều chạy trên loop.
    """

    def __init__(
        self,
        transport: Optional[GenerationTransport] = None,
        history: Optional[HistoryStore] = None,
        controller: Optional[GenerationController] = None,
    ) -> None:
        self._transport = transport or HttpGenerationTransport()
        self.history = history or HistoryStore(build_backend())
        self.history.load()
        self.controller = controller or GenerationController.from_settings(self._transport)
        self.controller.subscribe(self._on_status)

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=_run_loop,
            args=(self._loop,),
            name="studio-controller",
            daemon=True,
        )
        self._thread.start()
        self._closed = False
        self._finalizer = weakref.finalize(self, _stop_loop, self._loop, self._transport)

    @property
    def status(self) -> GenerationStatus:
        return self.controller.status

    @property
    def history_items(self) -> List[Generation]:
        return self.history.items

    def generate(self, request: GenerationRequest) -> None:
        self._loop.call_soon_threadsafe(self.controller.generate, request)

    def abort(self) -> None:
        self._loop.call_soon_threadsafe(self.controller.abort)

    def retry(self) -> None:
        self._loop.call_soon_threadsafe(self.controller.retry)

    def clear_history(self) -> None:
        self.history.clear()

    def restore(self, generation_id: str) -> Optional[RestoredForm]:
        """Prompt, style and original image of a history item, for refilling the form."""
        item = self.history.get(generation_id)
        if item is None:
            logger.warning("History item %s not found", generation_id)
            return None

        try:
            upload = upload_from_data_url(item.original_image_url, name=f"history-{item.id[:8]}")
        except UploadError as e:
            logger.warning("Original image of %s can't be restored: %s", item.id, e.message)
            upload = None
        return RestoredForm(prompt=item.prompt, style=item.style, upload=upload)

    def _on_status(self, status: GenerationStatus) -> None:
        # Thêm vào history ở listener, không phải lúc render
        if status.phase is Phase.SUCCEEDED and status.result is not None:
            self.history.add(status.result)

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        self._finalizer.detach()
        logger.info("Closing studio session")

        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=timeout)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=timeout)

    async def _shutdown(self) -> None:
        task = self.controller.attempt_task
        self.controller.close()
        if task is not None:
            # chờ task bị cancel chạy xong trước khi dừng loop
            await asyncio.gather(task, return_exceptions=True)

        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()
