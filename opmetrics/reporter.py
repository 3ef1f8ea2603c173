"""Event reporter and async lifecycle instrumentation.

A :class:`Reporter` owns the session state, shapes and dispatches events, and
wraps long-running coroutines so that each run emits a ``started`` event and
exactly one terminal event (``completed``, ``errored`` or ``cancelled``).
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
import traceback
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from ._version import __version__
from .cancel import DEFAULT_SIGNALS, CancellationController
from .config import (
    CANCEL_GRACE_PERIOD_S,
    DEFAULT_EVENT_PREFIX,
    MetricsSettings,
    Permission,
    get_device_id,
    get_permission,
    read_metrics_config,
)
from .context import InvocationContext, bind_invocation, set_event_property
from .errors import CancelError
from .events import EVENT_SUBJECTS, EventPayload, Phase, lifecycle_names, split_event_name
from .host import detect_package_manager, get_platform
from .session import SessionContext
from .sink import EventSink, HttpEventSink

logger = logging.getLogger("opmetrics.reporter")

ResultT = TypeVar("ResultT")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class DispatchRecord:
    """Outcome of one send attempt."""

    status: Literal["success", "failed"]
    payload: EventPayload
    reason: BaseException | None = None


@dataclass(slots=True)
class _Dispatch:
    payload: EventPayload
    task: asyncio.Task[DispatchRecord]


@dataclass(frozen=True, slots=True)
class Duration:
    ms: float
    seconds: float
    minutes: float

    @classmethod
    def since(cls, start: float) -> Duration:
        # One monotonic sample; the three units are derived from it.
        ms = max(0.0, (time.monotonic() - start) * 1000)
        return cls(ms=ms, seconds=ms / 1000, minutes=ms / 1000 / 60)

    def as_properties(self) -> dict[str, float]:
        return {
            "durationMs": self.ms,
            "durationSeconds": self.seconds,
            "durationMinutes": self.minutes,
        }


def describe_error(exc: BaseException) -> dict[str, str | None]:
    message = str(exc) or None
    stack = None
    if exc.__traceback__ is not None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {"message": message, "stack": stack}


class Reporter:
    """Shapes, dispatches and tracks telemetry events for one process."""

    def __init__(
        self,
        *,
        session: SessionContext,
        sink: EventSink,
        permission: Permission,
        event_prefix: str = DEFAULT_EVENT_PREFIX,
        grace_period_s: float = CANCEL_GRACE_PERIOD_S,
        strict: bool = False,
        subjects: Iterable[str] = EVENT_SUBJECTS,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        self.session = session
        self._sink = sink
        self._permission = permission
        self._event_prefix = event_prefix
        self._grace_period_s = grace_period_s
        self._strict = strict
        self._subjects = frozenset(subjects)
        self._signals = tuple(signals)
        self._dispatches: list[_Dispatch] = []

    @property
    def telemetry_enabled(self) -> bool:
        return self._permission.enabled and self._sink.has_source_key()

    @property
    def pending_dispatches(self) -> int:
        return sum(1 for dispatch in self._dispatches if not dispatch.task.done())

    def send_event(self, name: str, properties: Mapping[str, Any] | None = None) -> None:
        """Queue ``name`` for delivery without waiting for the network."""

        split_event_name(name, subjects=self._subjects)
        if not self.telemetry_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("event_dispatch_skipped", extra={"event": name, "reason": "no_running_loop"})
            return

        event_id = self.session.allocate_event_id()
        payload = EventPayload(
            event=f"{self._event_prefix} {name}" if self._event_prefix else name,
            device_id=self.session.device_id,
            timestamp=_epoch_ms(),
            properties={**self.session.base_properties(event_id), **(properties or {})},
        )
        task = loop.create_task(self._deliver(payload), name=f"opmetrics:{name}")
        self._dispatches.append(_Dispatch(payload=payload, task=task))

    async def _deliver(self, payload: EventPayload) -> DispatchRecord:
        try:
            await self._sink.send(payload)
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "event_dispatch_failed",
                extra={"event": payload.event, "exception": exc},
            )
            return DispatchRecord(status="failed", payload=payload, reason=exc)
        return DispatchRecord(status="success", payload=payload)

    async def wait_for_all_events_settled(self) -> list[DispatchRecord]:
        """Wait for every dispatched event, including ones queued while waiting."""

        settled = 0
        while settled < len(self._dispatches):
            batch = self._dispatches[settled:]
            await asyncio.gather(*(dispatch.task for dispatch in batch), return_exceptions=True)
            settled += len(batch)

        records = [self._record_for(dispatch) for dispatch in self._dispatches]
        failed = sum(1 for record in records if record.status == "failed")
        logger.debug(
            "events_settled",
            extra={"total": len(records), "failed": failed},
        )
        return records

    @staticmethod
    def _record_for(dispatch: _Dispatch) -> DispatchRecord:
        task = dispatch.task
        if task.cancelled():
            return DispatchRecord(
                status="failed",
                payload=dispatch.payload,
                reason=asyncio.CancelledError(),
            )
        exc = task.exception()
        if exc is not None:
            return DispatchRecord(status="failed", payload=dispatch.payload, reason=exc)
        return task.result()

    def set_event_property(self, key: str, value: Any) -> None:
        """Attach ``key`` to the terminal event of the enclosing :meth:`instrument` call."""

        set_event_property(key, value, strict=self._strict)

    async def instrument(
        self,
        subject: str,
        props: Mapping[str, Any] | None,
        operation: Callable[[], Awaitable[ResultT]],
        *,
        disable_telemetry: bool = False,
    ) -> ResultT:
        """Run ``operation`` and report its lifecycle under ``subject``.

        The operation is raced against SIGINT/SIGTERM. An interrupt fails the
        run with :class:`CancelError` once the grace period elapses; any other
        exception is reported and re-raised unchanged.
        """

        names = lifecycle_names(subject, subjects=self._subjects)
        props = dict(props or {})
        emit = not disable_telemetry
        invocation = InvocationContext(subject)
        controller = CancellationController(
            grace_period_s=self._grace_period_s,
            signals=self._signals,
        )
        start = time.monotonic()

        try:
            if emit:
                self.send_event(names[Phase.STARTED], props)
            with controller:
                with bind_invocation(invocation):
                    task = asyncio.ensure_future(operation())
                result = await self._race(task, controller)
        except (CancelError, asyncio.CancelledError):
            properties = self._terminal_properties(props, invocation, start)
            if emit:
                self.send_event(names[Phase.CANCELLED], properties)
            raise
        except Exception as exc:
            properties = self._terminal_properties(props, invocation, start, error=describe_error(exc))
            if emit:
                self.send_event(names[Phase.ERRORED], properties)
            raise

        properties = self._terminal_properties(props, invocation, start)
        if emit:
            self.send_event(names[Phase.COMPLETED], properties)
        return result

    @staticmethod
    async def _race(
        task: asyncio.Future[ResultT],
        controller: CancellationController,
    ) -> ResultT:
        try:
            done, _pending = await asyncio.wait(
                {task, controller.future},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            _abandon(task)
            raise
        if task in done:
            return task.result()
        # The operation lost the race; its eventual outcome is discarded.
        _abandon(task)
        exc = controller.future.exception()
        if exc is None:
            raise RuntimeError("cancellation future resolved without an error")
        raise exc

    @staticmethod
    def _terminal_properties(
        props: dict[str, Any],
        invocation: InvocationContext,
        start: float,
        **computed: Any,
    ) -> dict[str, Any]:
        duration = Duration.since(start)
        return {
            **props,
            **invocation.close(),
            **duration.as_properties(),
            **computed,
        }

    async def __aenter__(self) -> Reporter:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.wait_for_all_events_settled()


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()


def _abandon(task: asyncio.Future[Any]) -> None:
    task.cancel()
    task.add_done_callback(_discard_outcome)


def create_reporter(
    settings: MetricsSettings | None = None,
    *,
    sink: EventSink | None = None,
    tool_version: str = __version__,
) -> Reporter:
    """Build a reporter from the persisted config and ``OPMETRICS_*`` settings."""

    settings = settings or MetricsSettings.from_env()
    config = read_metrics_config(settings.config_path)
    is_first_usage = config.c3permission is None
    permission = get_permission(settings.config_path, config)
    device_id = get_device_id(settings.config_path, config)
    session = SessionContext(
        device_id=device_id,
        platform=get_platform(),
        package_manager=detect_package_manager(),
        tool_version=tool_version,
        is_first_usage=is_first_usage,
    )
    logger.debug(
        "reporter_created",
        extra={"telemetry_enabled": permission.enabled, "first_usage": is_first_usage},
    )
    return Reporter(
        session=session,
        sink=sink or HttpEventSink.from_settings(settings),
        permission=permission,
        event_prefix=settings.event_prefix,
        grace_period_s=settings.grace_period_s,
        strict=settings.strict,
    )


__all__ = [
    "DispatchRecord",
    "Duration",
    "Reporter",
    "create_reporter",
    "describe_error",
]
