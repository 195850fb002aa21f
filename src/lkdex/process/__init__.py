"""Process lifecycle helpers."""

from __future__ import annotations

from ..config.settings import Config
from .pidfile import (
    AlreadyRunningError,
    ClaimState,
    InstanceGuardError,
    PidFile,
    PidFileIOError,
    read_pid,
)


def claim_instance(config: Config, *, reclaim_stale: bool = False) -> PidFile:
    """Claim the PID file configured for ``config``; raises on failure."""

    guard = PidFile(config.pid_file_dir(), reclaim_stale=reclaim_stale)
    guard.claim()
    return guard


__all__ = [
    "AlreadyRunningError",
    "ClaimState",
    "InstanceGuardError",
    "PidFile",
    "PidFileIOError",
    "claim_instance",
    "read_pid",
]
