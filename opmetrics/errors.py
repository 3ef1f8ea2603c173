"""Exception types raised by opmetrics."""

from __future__ import annotations

from signal import Signals


class MetricsError(Exception):
    """Base class for opmetrics errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class CancelError(MetricsError):
    """Raised when an instrumented operation is interrupted by a signal."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        signal: Signals | None = None,
    ) -> None:
        super().__init__(message)
        self.signal = signal

    def __repr__(self) -> str:
        name = self.signal.name if self.signal is not None else None
        return f"CancelError({self.message!r}, signal={name})"


class OutsideInvocationError(MetricsError):
    """Raised in strict mode when an event property is set with no active invocation."""

    def __init__(self) -> None:
        super().__init__(
            "set_event_property must be called within Reporter.instrument",
        )


class UnknownEventError(MetricsError):
    """Raised for event names outside the known subject/phase catalogue."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown event '{name}'")
        self.name = name


__all__ = [
    "CancelError",
    "MetricsError",
    "OutsideInvocationError",
    "UnknownEventError",
]
