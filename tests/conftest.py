"""Shared pytest fixtures for the studio tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List

import pytest

from shared.schema import Generation, GenerationRequest

# ============================================================================
# Async
# ============================================================================


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def drain(rounds: int = 10) -> None:
    """Let pending tasks on the running loop make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[..., Any]:
    return drain


# ============================================================================
# Simulated clock
# ============================================================================


@dataclass
class FakeTimer:
    when: float
    callback: Callable[..., Any]
    args: tuple
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeClock:
    """Scheduler with ``loop.call_later`` semantics driven by ``advance()``."""

    now: float = 0.0
    timers: List[FakeTimer] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted(
                (t for t in self.timers if not t.cancelled and t.when <= target),
                key=lambda t: t.when,
            )
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Transports
# ============================================================================


class ScriptedTransport:
    """Plays back outcomes in order; the last outcome repeats.

    An outcome is a Generation (returned), an exception (raised) or an
    ``asyncio.Event`` (awaited forever unless set, then the next outcome is used).
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.requests: List[GenerationRequest] = []
        self.cancelled = 0
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def send(self, request: GenerationRequest) -> Generation:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, asyncio.Event):
            try:
                await outcome.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
            outcome = self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def scripted() -> Callable[..., ScriptedTransport]:
    return ScriptedTransport


# ============================================================================
# Models
# ============================================================================


@pytest.fixture
def make_request() -> Callable[..., GenerationRequest]:
    def _make(**overrides: Any) -> GenerationRequest:
        data = {
            "image_data_url": "data:image/png;base64,aGVsbG8=",
            "prompt": "Test prompt",
            "style": "editorial",
            "creativity": 5,
            "strength": 75,
        }
        data.update(overrides)
        return GenerationRequest(**data)

    return _make


@pytest.fixture
def make_generation() -> Callable[..., Generation]:
    counter = {"n": 0}

    def _make(**overrides: Any) -> Generation:
        counter["n"] += 1
        data = {
            "id": f"gen-{counter['n']}",
            "image_url": "https://images.example.test/result.jpg",
            "original_image_url": "data:image/png;base64,aGVsbG8=",
            "prompt": "Test prompt",
            "style": "editorial",
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return Generation(**data)

    return _make
