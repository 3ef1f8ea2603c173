"""Call-tree scoped property bag for instrumented operations.

``Reporter.instrument`` binds an :class:`InvocationContext` through a
``ContextVar`` before it creates the operation task. ``asyncio`` copies the
current context into every task it creates, so the binding is visible to the
operation and anything it awaits or spawns, and invisible to sibling
invocations running on the same loop.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .errors import OutsideInvocationError

logger = logging.getLogger("opmetrics.context")

_CURRENT_INVOCATION: contextvars.ContextVar[InvocationContext | None] = contextvars.ContextVar(
    "opmetrics_invocation", default=None
)


class InvocationContext:
    """Mutable properties merged into an invocation's terminal event."""

    __slots__ = ("subject", "_properties", "_closed")

    def __init__(self, subject: str) -> None:
        self.subject = subject
        self._properties: dict[str, Any] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def set(self, key: str, value: Any) -> None:
        if self._closed:
            logger.debug(
                "event_property_after_close",
                extra={"subject": self.subject, "key": key},
            )
            return
        self._properties[key] = value

    def close(self) -> dict[str, Any]:
        """Freeze the bag and return a snapshot of its properties."""

        self._closed = True
        return dict(self._properties)


def current_invocation() -> InvocationContext | None:
    return _CURRENT_INVOCATION.get()


@contextmanager
def bind_invocation(context: InvocationContext) -> Iterator[InvocationContext]:
    token = _CURRENT_INVOCATION.set(context)
    try:
        yield context
    finally:
        _CURRENT_INVOCATION.reset(token)


def set_event_property(key: str, value: Any, *, strict: bool = False) -> None:
    """Attach ``key`` to the terminal event of the enclosing invocation.

    Outside an invocation this is a no-op unless ``strict`` is set.
    """

    context = _CURRENT_INVOCATION.get()
    if context is None:
        if strict:
            raise OutsideInvocationError()
        return
    context.set(key, value)


__all__ = [
    "InvocationContext",
    "bind_invocation",
    "current_invocation",
    "set_event_property",
]
