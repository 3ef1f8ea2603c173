"""Process-lifetime session state shared by every dispatched event."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .host import PackageManager


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class SessionContext:
    """Identity and counters stamped onto every event of one process."""

    device_id: str
    platform: str
    package_manager: PackageManager
    tool_version: str
    is_first_usage: bool
    session_id: int = field(default_factory=_epoch_ms)
    next_event_id: int = 0

    def allocate_event_id(self) -> int:
        # Ids distinguish events sharing a device and a timestamp.
        event_id = self.next_event_id
        self.next_event_id += 1
        return event_id

    def base_properties(self, event_id: int) -> dict[str, Any]:
        return {
            "amplitude_session_id": self.session_id,
            "amplitude_event_id": event_id,
            "platform": self.platform,
            "cliVersion": self.tool_version,
            "isFirstUsage": self.is_first_usage,
            "packageManager": self.package_manager.name,
        }


__all__ = ["SessionContext"]
