"""Tests for the generation retry/backoff/abort state machine."""

from __future__ import annotations

import asyncio

import pytest

from frontend.controller import GenerationController, GenerationStatus, Phase
from frontend.errors import (
    GenerationCancelled,
    NetworkError,
    RequestValidationError,
    ServerError,
)

pytestmark = pytest.mark.anyio


def build(transport, clock, **kwargs) -> GenerationController:
    return GenerationController(transport, scheduler=clock, **kwargs)


async def test_initial_status_is_idle(scripted, clock) -> None:
    controller = build(scripted(ServerError("unused")), clock)

    status = controller.status
    assert status == GenerationStatus()
    assert status.is_loading is False
    assert status.can_abort is False
    assert status.error is None
    assert status.result is None
    assert status.retry_count == 0


async def test_success_on_first_attempt(scripted, clock, settle, make_request, make_generation) -> None:
    generation = make_generation()
    transport = scripted(generation)
    controller = build(transport, clock)

    controller.generate(make_request())

    assert controller.status.is_loading is True
    assert controller.status.can_abort is True

    await settle()

    status = controller.status
    assert status.phase is Phase.SUCCEEDED
    assert status.is_loading is False
    assert status.error is None
    assert status.result == generation
    assert transport.calls == 1


async def test_duplicate_generate_while_in_flight_is_ignored(scripted, clock, settle, make_request) -> None:
    transport = scripted(asyncio.Event())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    controller.generate(make_request(prompt="second"))
    await settle()

    assert transport.calls == 1
    assert transport.requests[0].prompt == "Test prompt"
    assert controller.status.retry_count == 0
    controller.close()


async def test_duplicate_generate_during_retry_pending_is_ignored(scripted, clock, settle, make_request) -> None:
    transport = scripted(ServerError("Model overloaded"))
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    assert controller.status.phase is Phase.RETRY_PENDING
    retry_count = controller.status.retry_count

    controller.generate(make_request())
    await settle()

    assert transport.calls == 1
    assert controller.status.retry_count == retry_count
    assert len(clock.pending) == 1


async def test_fails_twice_then_succeeds(scripted, clock, settle, make_request, make_generation) -> None:
    generation = make_generation()
    transport = scripted(ServerError("Server error"), ServerError("Server error"), generation)
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    assert transport.calls == 1
    assert controller.status.phase is Phase.RETRY_PENDING
    assert controller.status.is_loading is True

    clock.advance(1.5)
    await settle()
    assert transport.calls == 1

    clock.advance(0.5)
    await settle()
    assert transport.calls == 2

    clock.advance(4.0)
    await settle()

    assert transport.calls == 3
    status = controller.status
    assert status.phase is Phase.SUCCEEDED
    assert status.result == generation
    assert status.error is None
    assert status.is_loading is False


async def test_every_retry_resends_the_original_request(scripted, clock, settle, make_request, make_generation) -> None:
    transport = scripted(NetworkError(), ServerError("Server error"), make_generation())
    controller = build(transport, clock)
    request = make_request()

    controller.generate(request)
    await settle()
    clock.advance(2.0)
    await settle()
    clock.advance(4.0)
    await settle()

    assert transport.calls == 3
    assert all(sent is request for sent in transport.requests)
    assert controller.status.phase is Phase.SUCCEEDED


async def test_persistent_failure_stops_after_three_calls(scripted, clock, settle, make_request) -> None:
    transport = scripted(ServerError("Persistent server error"))
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    for delay in (2.0, 4.0, 8.0, 16.0):
        clock.advance(delay)
        await settle()

    status = controller.status
    assert transport.calls == 3
    assert status.phase is Phase.FAILED
    assert status.is_loading is False
    assert status.error == "Persistent server error"
    assert status.result is None
    assert clock.pending == []


async def test_retry_pending_message_and_delays(scripted, clock, settle, make_request) -> None:
    transport = scripted(NetworkError())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()

    assert controller.status.error == (
        "Network error occurred. Please check your connection. - "
        "Retrying in 2 seconds... (Attempt 2/3)"
    )
    assert controller.status.retry_count == 1
    assert [t.when for t in clock.pending] == [2.0]

    clock.advance(2.0)
    await settle()

    assert controller.status.error.endswith("Retrying in 4 seconds... (Attempt 3/3)")
    assert [t.when for t in clock.pending] == [6.0]


async def test_last_backoff_value_repeats_when_schedule_is_short(scripted, clock, settle, make_request) -> None:
    transport = scripted(ServerError("boom"))
    controller = build(transport, clock, max_attempts=4, backoff_schedule=(1.0,))

    controller.generate(make_request())
    await settle()
    clock.advance(1.0)
    await settle()
    clock.advance(1.0)
    await settle()
    assert transport.calls == 3
    clock.advance(1.0)
    await settle()

    assert transport.calls == 4
    assert controller.status.phase is Phase.FAILED


async def test_validation_error_is_not_retried(scripted, clock, settle, make_request) -> None:
    transport = scripted(RequestValidationError("Validation error"))
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()

    assert transport.calls == 1
    assert controller.status.phase is Phase.FAILED
    assert controller.status.error == "Validation error"
    assert clock.pending == []


async def test_unexpected_exception_is_retried_with_its_message(scripted, clock, settle, make_request) -> None:
    transport = scripted(RuntimeError("kaboom"))
    controller = build(transport, clock, max_attempts=2)

    controller.generate(make_request())
    await settle()
    clock.advance(2.0)
    await settle()

    assert transport.calls == 2
    assert controller.status.error == "kaboom"


async def test_abort_while_attempting(scripted, clock, settle, make_request) -> None:
    transport = scripted(asyncio.Event())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    controller.abort()

    status = controller.status
    assert status.phase is Phase.ABORTED
    assert status.is_loading is False
    assert status.can_abort is False
    assert status.error is None
    assert status.result is None

    await settle()
    clock.advance(60)
    await settle()

    assert transport.calls == 1
    assert transport.cancelled == 1
    assert controller.status.phase is Phase.ABORTED


async def test_abort_immediately_after_generate_records_nothing(
    scripted, clock, settle, make_request, make_generation
) -> None:
    transport = scripted(make_generation())
    controller = build(transport, clock)
    seen = []
    controller.subscribe(seen.append)

    controller.generate(make_request())
    controller.abort()
    await settle()

    assert controller.status.is_loading is False
    assert controller.status.error is None
    assert controller.status.result is None
    assert all(s.phase not in (Phase.SUCCEEDED, Phase.FAILED) for s in seen)


async def test_abort_during_retry_pending_cancels_timer(scripted, clock, settle, make_request) -> None:
    transport = scripted(ServerError("Model overloaded"))
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    assert controller.status.phase is Phase.RETRY_PENDING

    controller.abort()
    assert controller.status.is_loading is False
    assert controller.status.error is None
    assert clock.pending == []

    clock.advance(60)
    await settle()
    assert transport.calls == 1


async def test_abort_when_idle_is_noop(scripted, clock) -> None:
    controller = build(scripted(ServerError("unused")), clock)
    seen = []
    controller.subscribe(seen.append)

    controller.abort()
    controller.abort()

    assert seen == []
    assert controller.status.phase is Phase.IDLE


async def test_stale_timer_after_abort_and_new_generate_does_nothing(
    scripted, clock, settle, make_request, make_generation
) -> None:
    transport = scripted(ServerError("first"), asyncio.Event())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    stale_timer = clock.pending[0]

    controller.abort()
    controller.generate(make_request(prompt="fresh"))
    await settle()
    assert transport.calls == 2

    # simulate a timer that fires even though it was cancelled
    stale_timer.callback(*stale_timer.args)
    await settle()

    assert transport.calls == 2
    assert controller.status.phase is Phase.ATTEMPTING
    controller.close()


async def test_cancellation_from_transport_is_not_an_error(scripted, clock, settle, make_request) -> None:
    transport = scripted(GenerationCancelled())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()

    assert transport.calls == 1
    assert controller.status.error is None
    assert controller.status.is_loading is False
    assert clock.pending == []


async def test_manual_retry_after_failure(scripted, clock, settle, make_request, make_generation) -> None:
    generation = make_generation()
    transport = scripted(
        ServerError("down"), ServerError("down"), ServerError("down"), generation
    )
    controller = build(transport, clock)
    request = make_request()

    controller.generate(request)
    await settle()
    clock.advance(2.0)
    await settle()
    clock.advance(4.0)
    await settle()
    assert controller.status.phase is Phase.FAILED

    controller.retry()
    assert controller.status.error is None
    assert controller.status.retry_count == 0
    await settle()

    assert transport.calls == 4
    assert transport.requests[-1] is request
    assert controller.status.phase is Phase.SUCCEEDED
    assert controller.status.error is None
    assert controller.status.result == generation


async def test_retry_without_previous_request_is_noop(scripted, clock) -> None:
    transport = scripted(ServerError("unused"))
    controller = build(transport, clock)

    controller.retry()

    assert transport.calls == 0
    assert controller.status.phase is Phase.IDLE


async def test_new_generate_clears_previous_result_and_error(
    scripted, clock, settle, make_request, make_generation
) -> None:
    transport = scripted(make_generation(), asyncio.Event())
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    assert controller.status.result is not None

    controller.generate(make_request(prompt="again"))

    assert controller.status.result is None
    assert controller.status.error is None
    assert controller.status.is_loading is True
    controller.close()


async def test_listeners_see_every_transition(scripted, clock, settle, make_request, make_generation) -> None:
    transport = scripted(ServerError("oops"), make_generation())
    controller = build(transport, clock)
    phases = []
    unsubscribe = controller.subscribe(lambda s: phases.append(s.phase))

    controller.generate(make_request())
    await settle()
    clock.advance(2.0)
    await settle()
    unsubscribe()
    controller.generate(make_request())

    assert phases == [
        Phase.ATTEMPTING,
        Phase.RETRY_PENDING,
        Phase.ATTEMPTING,
        Phase.SUCCEEDED,
    ]
    controller.close()


async def test_failing_listener_does_not_break_controller(
    scripted, clock, settle, make_request, make_generation
) -> None:
    controller = build(scripted(make_generation()), clock)

    def broken(status: GenerationStatus) -> None:
        raise RuntimeError("listener bug")

    controller.subscribe(broken)
    controller.generate(make_request())
    await settle()

    assert controller.status.phase is Phase.SUCCEEDED


async def test_close_cancels_pending_work(scripted, clock, settle, make_request) -> None:
    transport = scripted(ServerError("later"))
    controller = build(transport, clock)

    controller.generate(make_request())
    await settle()
    controller.close()
    clock.advance(60)
    await settle()

    assert transport.calls == 1
    assert controller.status.is_loading is False


def test_invalid_configuration_is_rejected(scripted) -> None:
    transport = scripted(ServerError("unused"))
    with pytest.raises(ValueError):
        GenerationController(transport, max_attempts=0)
    with pytest.raises(ValueError):
        GenerationController(transport, backoff_schedule=())


def test_from_settings_uses_configured_retry_budget(scripted) -> None:
    controller = GenerationController.from_settings(scripted(ServerError("unused")))

    assert controller.max_attempts == 3
    assert controller.backoff_schedule == (2.0, 4.0, 8.0)
