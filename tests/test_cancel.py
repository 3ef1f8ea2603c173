from __future__ import annotations

import asyncio
import signal

import pytest

from opmetrics import CancelError, CancellationController


async def _interrupt_when(event: asyncio.Event, sig: signal.Signals = signal.SIGTERM) -> None:
    await event.wait()
    signal.raise_signal(sig)


@pytest.mark.asyncio
async def test_notify_rejects_after_grace_period() -> None:
    controller = CancellationController(grace_period_s=0.05)
    with controller:
        controller.notify(signal.SIGINT)
        await asyncio.sleep(0)
        assert controller.interrupted
        assert not controller.future.done()

        with pytest.raises(CancelError) as excinfo:
            await asyncio.wait_for(controller.future, timeout=1)

    assert excinfo.value.signal == signal.SIGINT
    assert controller.received_signal == signal.SIGINT


@pytest.mark.asyncio
async def test_repeated_interrupts_collapse_into_first() -> None:
    controller = CancellationController(grace_period_s=0.02)
    with controller:
        controller.notify(signal.SIGTERM)
        controller.notify(signal.SIGINT)
        with pytest.raises(CancelError) as excinfo:
            await controller.future
        controller.notify(signal.SIGINT)

    assert excinfo.value.signal == signal.SIGTERM


@pytest.mark.asyncio
async def test_unregister_during_grace_period_discards_rejection() -> None:
    controller = CancellationController(grace_period_s=0.02)
    controller.register()
    controller.notify(signal.SIGINT)
    future = controller.future
    controller.unregister()

    await asyncio.sleep(0.05)
    assert future.cancelled()


@pytest.mark.asyncio
async def test_notify_before_register_is_ignored() -> None:
    controller = CancellationController()
    controller.notify(signal.SIGINT)

    assert not controller.interrupted
    with pytest.raises(RuntimeError):
        controller.future  # noqa: B018


@pytest.mark.asyncio
async def test_handlers_are_restored_on_exit() -> None:
    previous_int = signal.getsignal(signal.SIGINT)
    previous_term = signal.getsignal(signal.SIGTERM)

    with CancellationController():
        assert signal.getsignal(signal.SIGINT) != previous_int
        assert signal.getsignal(signal.SIGTERM) != previous_term

    assert signal.getsignal(signal.SIGINT) == previous_int
    assert signal.getsignal(signal.SIGTERM) == previous_term


@pytest.mark.asyncio
async def test_os_signal_reaches_every_active_controller() -> None:
    previous = signal.getsignal(signal.SIGTERM)
    outer = CancellationController(grace_period_s=0.01)
    inner = CancellationController(grace_period_s=0.01)

    with outer:
        with inner:
            signal.raise_signal(signal.SIGTERM)
            for controller in (inner, outer):
                with pytest.raises(CancelError) as excinfo:
                    await asyncio.wait_for(controller.future, timeout=1)
                assert excinfo.value.signal == signal.SIGTERM
        assert signal.getsignal(signal.SIGTERM) != previous

    assert signal.getsignal(signal.SIGTERM) == previous


@pytest.mark.asyncio
async def test_interrupt_reports_cancelled_and_raises(make_reporter) -> None:
    reporter = make_reporter()
    previous = signal.getsignal(signal.SIGTERM)
    started = asyncio.Event()

    async def hang() -> None:
        started.set()
        await asyncio.Event().wait()

    trigger = asyncio.create_task(_interrupt_when(started))
    with pytest.raises(CancelError) as excinfo:
        await reporter.instrument("session", {"args": {}}, hang)
    await trigger
    records = await reporter.wait_for_all_events_settled()

    assert excinfo.value.signal == signal.SIGTERM
    assert [r.payload.event for r in records] == ["test session started", "test session cancelled"]
    cancelled = records[1].payload.properties
    assert cancelled["args"] == {}
    assert cancelled["durationMs"] >= 0
    assert "error" not in cancelled
    assert signal.getsignal(signal.SIGTERM) == previous


@pytest.mark.asyncio
async def test_cancelled_event_keeps_properties_set_before_interrupt(make_reporter) -> None:
    reporter = make_reporter()
    started = asyncio.Event()

    async def hang() -> None:
        reporter.set_event_property("alreadyLoggedIn", True)
        started.set()
        await asyncio.Event().wait()

    trigger = asyncio.create_task(_interrupt_when(started, signal.SIGINT))
    with pytest.raises(CancelError):
        await reporter.instrument("login", {}, hang)
    await trigger
    records = await reporter.wait_for_all_events_settled()

    assert records[-1].payload.event == "test login cancelled"
    assert records[-1].payload.properties["alreadyLoggedIn"] is True


@pytest.mark.asyncio
async def test_late_result_after_cancellation_is_discarded(make_reporter) -> None:
    reporter = make_reporter()
    started = asyncio.Event()
    finished = asyncio.Event()

    async def stubborn() -> str:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            finished.set()
            return "late"
        return "on time"

    trigger = asyncio.create_task(_interrupt_when(started))
    with pytest.raises(CancelError):
        await reporter.instrument("prompt", {}, stubborn)
    await trigger
    await asyncio.wait_for(finished.wait(), timeout=1)
    await asyncio.sleep(0.02)
    records = await reporter.wait_for_all_events_settled()

    assert [r.payload.event for r in records] == ["test prompt started", "test prompt cancelled"]


@pytest.mark.asyncio
async def test_interrupt_with_disabled_telemetry_still_cancels(make_reporter) -> None:
    reporter = make_reporter()
    started = asyncio.Event()

    async def hang() -> None:
        started.set()
        await asyncio.Event().wait()

    trigger = asyncio.create_task(_interrupt_when(started))
    with pytest.raises(CancelError):
        await reporter.instrument("session", {}, hang, disable_telemetry=True)
    await trigger

    assert await reporter.wait_for_all_events_settled() == []


@pytest.mark.asyncio
async def test_nested_invocations_are_all_cancelled(make_reporter) -> None:
    reporter = make_reporter()
    started = asyncio.Event()

    async def prompt() -> None:
        started.set()
        await asyncio.Event().wait()

    async def session() -> None:
        await reporter.instrument("prompt", {"key": "type"}, prompt)

    trigger = asyncio.create_task(_interrupt_when(started))
    with pytest.raises(CancelError):
        await reporter.instrument("session", {}, session)
    await trigger
    await asyncio.sleep(0.02)
    records = await reporter.wait_for_all_events_settled()

    names = [r.payload.event for r in records]
    assert names[:2] == ["test session started", "test prompt started"]
    assert sorted(names[2:]) == ["test prompt cancelled", "test session cancelled"]


@pytest.mark.asyncio
async def test_cancel_error_from_operation_is_reported_as_cancelled(make_reporter) -> None:
    reporter = make_reporter()

    async def interrupted() -> None:
        raise CancelError("Operation cancelled", signal.SIGINT)

    with pytest.raises(CancelError):
        await reporter.instrument("session", {}, interrupted)
    records = await reporter.wait_for_all_events_settled()

    assert records[-1].payload.event == "test session cancelled"


@pytest.mark.asyncio
async def test_outer_task_cancellation_is_reported_as_cancelled(make_reporter) -> None:
    reporter = make_reporter()
    started = asyncio.Event()

    async def hang() -> None:
        started.set()
        await asyncio.Event().wait()

    runner = asyncio.create_task(reporter.instrument("session", {}, hang))
    await started.wait()
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner
    records = await reporter.wait_for_all_events_settled()

    assert [r.payload.event for r in records] == ["test session started", "test session cancelled"]


@pytest.mark.asyncio
async def test_operation_finishing_within_grace_period_completes(make_reporter) -> None:
    reporter = make_reporter(grace_period_s=0.2)
    previous = signal.getsignal(signal.SIGTERM)

    async def finish_quickly() -> str:
        signal.raise_signal(signal.SIGTERM)
        await asyncio.sleep(0.05)
        return "done"

    assert await reporter.instrument("session", {}, finish_quickly) == "done"
    records = await reporter.wait_for_all_events_settled()

    assert [r.payload.event for r in records] == ["test session started", "test session completed"]
    assert signal.getsignal(signal.SIGTERM) == previous


@pytest.mark.asyncio
async def test_handlers_are_restored_after_errored_run(make_reporter) -> None:
    reporter = make_reporter()
    previous_int = signal.getsignal(signal.SIGINT)
    previous_term = signal.getsignal(signal.SIGTERM)

    async def explode() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="^boom$"):
        await reporter.instrument("prompt", {}, explode)
    records = await reporter.wait_for_all_events_settled()

    assert records[-1].payload.event == "test prompt errored"
    assert signal.getsignal(signal.SIGINT) == previous_int
    assert signal.getsignal(signal.SIGTERM) == previous_term
