"""Public package surface for opmetrics."""

from __future__ import annotations

from ._version import __version__
from .cancel import CancellationController
from .config import MetricsSettings
from .context import InvocationContext, current_invocation, set_event_property
from .errors import CancelError, MetricsError, OutsideInvocationError, UnknownEventError
from .events import EVENT_SUBJECTS, EventPayload, Phase
from .reporter import DispatchRecord, Reporter, create_reporter
from .session import SessionContext
from .sink import EventSink, HttpEventSink

__all__ = [
    "__version__",
    "CancelError",
    "CancellationController",
    "DispatchRecord",
    "EVENT_SUBJECTS",
    "EventPayload",
    "EventSink",
    "HttpEventSink",
    "InvocationContext",
    "MetricsError",
    "MetricsSettings",
    "OutsideInvocationError",
    "Phase",
    "Reporter",
    "SessionContext",
    "UnknownEventError",
    "create_reporter",
    "current_invocation",
    "set_event_property",
]
