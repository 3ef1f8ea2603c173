import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Ensure repository root is on sys.path so tests run without an install.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from opmetrics.config import Permission  # noqa: E402
from opmetrics.events import EventPayload  # noqa: E402
from opmetrics.host import PackageManager  # noqa: E402
from opmetrics.reporter import Reporter  # noqa: E402
from opmetrics.session import SessionContext  # noqa: E402


class BufferSink:
    def __init__(self, *, source_key: bool = True, fail: bool = False) -> None:
        self.payloads: list[EventPayload] = []
        self.source_key = source_key
        self.fail = fail

    def has_source_key(self) -> bool:
        return self.source_key

    async def send(self, payload: EventPayload) -> None:
        self.payloads.append(payload)
        if self.fail:
            raise RuntimeError("collector unavailable")


@pytest.fixture
def sink() -> BufferSink:
    return BufferSink()


@pytest.fixture
def make_reporter(sink: BufferSink) -> Callable[..., Reporter]:
    def _factory(*, enabled: bool = True, sink_override: Any = None, **kwargs: Any) -> Reporter:
        session = SessionContext(
            device_id="device-1",
            platform="Linux",
            package_manager=PackageManager("pip"),
            tool_version="0.1.0",
            is_first_usage=False,
            session_id=1_700_000_000_000,
        )
        return Reporter(
            session=session,
            sink=sink_override or sink,
            permission=Permission(enabled=enabled),
            **kwargs,
        )

    return _factory


@pytest.fixture
def failing_sink() -> BufferSink:
    return BufferSink(fail=True)


@pytest.fixture
def keyless_sink() -> BufferSink:
    return BufferSink(source_key=False)
