"""Event catalogue and wire payload model.

Event names follow ``"<subject> <phase>"``. Every subject owns exactly four
lifecycle names, one per phase, so a ``started`` event always has matching
``completed``/``errored``/``cancelled`` siblings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import UnknownEventError


class Phase(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


EVENT_SUBJECTS: frozenset[str] = frozenset({"session", "prompt", "login"})


def event_name(subject: str, phase: Phase | str, *, subjects: frozenset[str] = EVENT_SUBJECTS) -> str:
    """Return the catalogued event name for ``subject`` and ``phase``."""

    try:
        phase = Phase(phase)
    except ValueError:
        raise UnknownEventError(f"{subject} {phase}") from None
    if subject not in subjects:
        raise UnknownEventError(f"{subject} {phase.value}")
    return f"{subject} {phase.value}"


def lifecycle_names(subject: str, *, subjects: frozenset[str] = EVENT_SUBJECTS) -> dict[Phase, str]:
    return {phase: event_name(subject, phase, subjects=subjects) for phase in Phase}


def split_event_name(name: str, *, subjects: frozenset[str] = EVENT_SUBJECTS) -> tuple[str, Phase]:
    subject, _, raw_phase = name.rpartition(" ")
    if not subject:
        raise UnknownEventError(name)
    event_name(subject, raw_phase, subjects=subjects)
    return subject, Phase(raw_phase)


class EventPayload(BaseModel):
    """Body POSTed to the collector for a single event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: str
    device_id: str
    timestamp: int
    properties: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "EVENT_SUBJECTS",
    "EventPayload",
    "Phase",
    "event_name",
    "lifecycle_names",
    "split_event_name",
]
