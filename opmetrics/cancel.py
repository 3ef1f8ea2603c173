"""Signal-driven cancellation for instrumented operations."""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from collections.abc import Callable, Iterable
from types import FrameType
from typing import Any

from .config import CANCEL_GRACE_PERIOD_S
from .errors import CancelError

logger = logging.getLogger("opmetrics.cancel")

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

SignalListener = Callable[[signal.Signals], None]


class _SignalHub:
    """Fans OS signals out to every registered listener.

    The OS handler is installed when the first listener for a signal arrives
    and the previous handler is restored when the last one leaves, so
    overlapping controllers never clobber each other's registration.
    """

    def __init__(self) -> None:
        self._listeners: dict[signal.Signals, list[SignalListener]] = {}
        self._previous: dict[signal.Signals, Any] = {}

    def add(self, listener: SignalListener, signals: Iterable[signal.Signals]) -> bool:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("signal_handlers_unavailable", extra={"thread": threading.current_thread().name})
            return False
        for sig in signals:
            listeners = self._listeners.setdefault(sig, [])
            if not listeners:
                self._previous[sig] = signal.getsignal(sig)
                signal.signal(sig, self._dispatch)
            listeners.append(listener)
        return True

    def remove(self, listener: SignalListener) -> None:
        for sig in list(self._listeners):
            listeners = self._listeners[sig]
            if listener in listeners:
                listeners.remove(listener)
            if listeners:
                continue
            del self._listeners[sig]
            previous = self._previous.pop(sig, None)
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)

    def _dispatch(self, signum: int, _frame: FrameType | None) -> None:
        sig = signal.Signals(signum)
        for listener in list(self._listeners.get(sig, ())):
            listener(sig)


_HUB = _SignalHub()


class CancellationController:
    """Turns an interrupt into a ``CancelError`` raised from :attr:`future`.

    After the first interrupt the controller waits ``grace_period_s`` before
    failing the future, which gives nested controllers time to settle their
    own operations first. Further interrupts are ignored.
    """

    def __init__(
        self,
        *,
        grace_period_s: float = CANCEL_GRACE_PERIOD_S,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        self._grace_period_s = grace_period_s
        self._signals = tuple(signals)
        self._listener: SignalListener = self._on_signal
        self._loop: asyncio.AbstractEventLoop | None = None
        self._future: asyncio.Future[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._signal: signal.Signals | None = None
        self._active = False
        self._requested = False

    @property
    def future(self) -> asyncio.Future[None]:
        if self._future is None:
            raise RuntimeError("CancellationController is not registered")
        return self._future

    @property
    def received_signal(self) -> signal.Signals | None:
        return self._signal

    @property
    def interrupted(self) -> bool:
        return self._requested

    def register(self) -> None:
        if self._active:
            raise RuntimeError("CancellationController already registered")
        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        self._active = True
        _HUB.add(self._listener, self._signals)

    def unregister(self) -> None:
        if not self._active:
            return
        self._active = False
        _HUB.remove(self._listener)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        future = self._future
        if future is None:
            return
        if not future.done():
            future.cancel()
        elif not future.cancelled():
            # Mark the exception as retrieved; the race has already consumed it.
            future.exception()

    def __enter__(self) -> CancellationController:
        self.register()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.unregister()

    def notify(self, signum: int | None = None) -> None:
        """Request cancellation; only the first request is honoured."""

        if not self._active or self._loop is None or self._future is None:
            return
        if self._requested or self._future.done():
            return
        self._requested = True
        self._signal = signal.Signals(signum) if signum is not None else None
        logger.debug(
            "cancel_requested",
            extra={"signal": self._signal.name if self._signal else None},
        )
        self._timer = self._loop.call_later(self._grace_period_s, self._reject)

    def _on_signal(self, sig: signal.Signals) -> None:
        # Runs inside the OS signal handler; hop back onto the loop.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.notify, sig)

    def _reject(self) -> None:
        self._timer = None
        if self._future is None or self._future.done():
            return
        self._future.set_exception(CancelError("Operation cancelled", self._signal))


__all__ = ["CancellationController", "DEFAULT_SIGNALS"]
