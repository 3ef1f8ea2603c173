"""Host platform and package manager detection."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PackageManager:
    name: str
    version: str | None = None


PIP = PackageManager("pip")

# Checked in order; the first variable present in the environment wins.
_ENV_MARKERS: tuple[tuple[str, str], ...] = (
    ("UV", "uv"),
    ("POETRY_ACTIVE", "poetry"),
    ("PDM_PROJECT_ROOT", "pdm"),
    ("HATCH_ENV_ACTIVE", "hatch"),
    ("PIPX_HOME", "pipx"),
    ("CONDA_DEFAULT_ENV", "conda"),
)


def get_platform(value: str | None = None) -> str:
    value = value or sys.platform
    if value == "win32":
        return "Windows"
    if value == "darwin":
        return "Mac OS"
    if value.startswith("linux"):
        return "Linux"
    return f"Others: {value}"


def _from_user_agent(agent: str) -> PackageManager | None:
    # e.g. "uv/0.4.18 CPython/3.12.6" or "pip/24.2 {...}"
    head = agent.strip().split(" ", 1)[0]
    name, sep, version = head.partition("/")
    if not sep or not name:
        return None
    return PackageManager(name.lower(), version or None)


def detect_package_manager(env: Mapping[str, str] | None = None) -> PackageManager:
    """Best-effort guess of the tool that launched the current process."""

    env = os.environ if env is None else env
    agent = env.get("OPMETRICS_USER_AGENT")
    if agent:
        detected = _from_user_agent(agent)
        if detected is not None:
            return detected
    for variable, name in _ENV_MARKERS:
        if env.get(variable):
            return PackageManager(name)
    return PIP


__all__ = ["PIP", "PackageManager", "detect_package_manager", "get_platform"]
