"""Retry / backoff / abort state machine for one logical generation at a time.

The controller runs on a single asyncio event loop. ``generate``, ``abort`` and
``retry`` are plain synchronous calls that must be made from that loop; they
never raise and never block. Observers read :attr:`GenerationController.status`
or subscribe to receive every new snapshot.

Every attempt task and every retry timer captures the generation token current
when it was issued, and drops its outcome if the token has moved on (abort or a
newer generation). Timers and tasks are also cancelled synchronously on abort.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Sequence

from config.settings import settings
from shared.schema import Generation, GenerationRequest

from .errors import GenerationCancelled, RequestValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SCHEDULE = (2.0, 4.0, 8.0)


class Phase(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRY_PENDING = "retry_pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


IN_FLIGHT = frozenset({Phase.ATTEMPTING, Phase.RETRY_PENDING})


@dataclass(frozen=True)
class GenerationStatus:
    """Immutable snapshot published after each phase transition."""

    phase: Phase = Phase.IDLE
    error: Optional[str] = None
    result: Optional[Generation] = None
    retry_count: int = 0

    @property
    def is_loading(self) -> bool:
        return self.phase in IN_FLIGHT

    @property
    def can_abort(self) -> bool:
        return self.phase in IN_FLIGHT


class GenerationTransport(Protocol):
    async def send(self, request: GenerationRequest) -> Generation: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``loop.call_later`` semantics."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


StatusListener = Callable[[GenerationStatus], None]


def _message_of(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or "Generation failed"


class GenerationController:
    def __init__(
        self,
        transport: GenerationTransport,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_schedule: Sequence[float] = DEFAULT_BACKOFF_SCHEDULE,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if not backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")

        self.max_attempts = max_attempts
        self.backoff_schedule = tuple(float(d) for d in backoff_schedule)
        self._transport = transport
        self._scheduler = scheduler

        self._phase = Phase.IDLE
        self._attempt_index = 0
        self._last_error: Optional[str] = None
        self._result: Optional[Generation] = None
        self._request: Optional[GenerationRequest] = None

        # cancellation handle: token + task đang chạy + timer retry
        self._token = 0
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[TimerHandle] = None

        self._status = GenerationStatus()
        self._listeners: List[StatusListener] = []

    @classmethod
    def from_settings(
        cls,
        transport: GenerationTransport,
        scheduler: Optional[Scheduler] = None,
    ) -> "GenerationController":
        return cls(
            transport,
            max_attempts=settings.MAX_RETRY_COUNT,
            backoff_schedule=settings.RETRY_DELAYS,
            scheduler=scheduler,
        )

    @property
    def status(self) -> GenerationStatus:
        return self._status

    @property
    def in_flight(self) -> bool:
        return self._phase in IN_FLIGHT

    @property
    def last_request(self) -> Optional[GenerationRequest]:
        return self._request

    @property
    def attempt_task(self) -> Optional[asyncio.Task]:
        return self._task

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def generate(self, request: GenerationRequest) -> None:
        if self.in_flight:
            logger.debug("generate() ignored: a generation is already in flight")
            return

        self._token += 1
        self._request = request
        self._attempt_index = 0
        self._last_error = None
        self._result = None
        logger.info("Starting generation #%d (style=%s)", self._token, request.style)
        self._start_attempt(self._token, request)

    def retry(self) -> None:
        """User-initiated retry: same request, attempt counter back to 0."""
        if self._request is None:
            logger.warning("retry() called before any generation")
            return
        if self.in_flight:
            return
        self._last_error = None
        self.generate(self._request)

    def abort(self) -> None:
        if not self.in_flight:
            return

        logger.info("Generation #%d aborted", self._token)
        self._invalidate()
        self._phase = Phase.ABORTED
        self._attempt_index = 0
        self._last_error = None
        self._publish()

    def close(self) -> None:
        """Teardown: cancel everything pending and drop listeners."""
        self.abort()
        self._invalidate()
        self._listeners.clear()

    def _invalidate(self) -> None:
        self._token += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _start_attempt(self, token: int, request: GenerationRequest) -> None:
        if token != self._token:
            return

        self._timer = None
        self._phase = Phase.ATTEMPTING
        self._publish()

        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_attempt(token, request))

    async def _run_attempt(self, token: int, request: GenerationRequest) -> None:
        try:
            result = await self._transport.send(request)
        except asyncio.CancelledError:
            if token == self._token:
                # task bị cancel từ bên ngoài (không qua abort)
                self._cancelled()
            raise
        except GenerationCancelled:
            if token == self._token:
                self._cancelled()
            return
        except RequestValidationError as e:
            if token == self._token:
                self._fail(_message_of(e))
            return
        except Exception as e:  # noqa: BLE001
            if token == self._token:
                self._attempt_failed(token, request, e)
            return

        if token != self._token:
            logger.debug("Dropping stale result of generation #%d", token)
            return
        self._succeed(result)

    def _attempt_failed(self, token: int, request: GenerationRequest, exc: Exception) -> None:
        message = _message_of(exc)
        logger.warning(
            "Generation attempt %d/%d failed: %s",
            self._attempt_index + 1,
            self.max_attempts,
            message,
        )

        if self._attempt_index >= self.max_attempts - 1:
            self._fail(message)
            return

        delay = self._delay_for(self._attempt_index)
        self._task = None
        self._phase = Phase.RETRY_PENDING
        self._last_error = (
            f"{message} - Retrying in {delay:g} seconds... "
            f"(Attempt {self._attempt_index + 2}/{self.max_attempts})"
        )
        self._attempt_index += 1
        self._publish()

        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(delay, self._start_attempt, token, request)

    def _delay_for(self, attempt_index: int) -> float:
        if attempt_index < len(self.backoff_schedule):
            return self.backoff_schedule[attempt_index]
        return self.backoff_schedule[-1]

    def _succeed(self, result: Generation) -> None:
        logger.info("Generation #%d succeeded: %s", self._token, result.id)
        self._task = None
        self._phase = Phase.SUCCEEDED
        self._result = result
        self._last_error = None
        self._attempt_index = 0
        self._publish()

    def _fail(self, message: str) -> None:
        logger.error("Generation #%d failed: %s", self._token, message)
        self._task = None
        self._phase = Phase.FAILED
        self._last_error = message
        self._publish()

    def _cancelled(self) -> None:
        self._token += 1
        self._task = None
        self._phase = Phase.ABORTED
        self._attempt_index = 0
        self._last_error = None
        self._publish()

    def _publish(self) -> None:
        self._status = GenerationStatus(
            phase=self._phase,
            error=self._last_error,
            result=self._result,
            retry_count=self._attempt_index,
        )
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:  # noqa: BLE001
                logger.exception("Status listener failed")
