"""Single-instance guard backed by an exclusively created PID file."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..monitoring.logger import get_logger

logger = get_logger(__name__)

PID_FILE_MODE = 0o644


class ClaimState(str, Enum):
    """Lifecycle of a PID file claim."""

    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    FAILED = "failed"


class InstanceGuardError(RuntimeError):
    """Base class for PID file claim failures."""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(message)
        self.path = path


class AlreadyRunningError(InstanceGuardError):
    """Another instance holds (or left behind) the PID file."""

    def __init__(self, path: Path, pid: Optional[int] = None) -> None:
        detail = f" (pid {pid})" if pid is not None else ""
        super().__init__(f"{path} already exists{detail}; is another instance running?", path)
        self.pid = pid


class PidFileIOError(InstanceGuardError):
    """The PID file could not be created or written."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"unable to write pid file {path}: {reason}", path)


def read_pid(path: Union[str, Path]) -> Optional[int]:
    """Return the PID recorded in ``path``, or ``None`` if missing or malformed."""

    try:
        content = Path(path).read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    try:
        return int(content)
    except ValueError:
        return None


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # The process exists but belongs to another user.
        return True
    except OSError:
        return False
    return True


class PidFile:
    """Claim ``path`` for the lifetime of this process.

    The claim is a single ``O_CREAT | O_EXCL`` open, so two processes racing on
    the same path cannot both succeed. A file that is already present is never
    overwritten unless ``reclaim_stale`` is set and the PID it names is dead.
    """

    def __init__(self, path: Union[str, Path], *, reclaim_stale: bool = False) -> None:
        self.path = Path(path)
        self.reclaim_stale = reclaim_stale
        self.state = ClaimState.UNCLAIMED
        self.pid: Optional[int] = None
        self._released = False

    @property
    def claimed(self) -> bool:
        return self.state == ClaimState.CLAIMED

    def claim(self) -> Path:
        if self.state != ClaimState.UNCLAIMED:
            raise InstanceGuardError(
                f"pid file {self.path} claim already attempted (state: {self.state.value})",
                self.path,
            )
        try:
            self._create()
        except InstanceGuardError:
            self.state = ClaimState.FAILED
            raise
        self.state = ClaimState.CLAIMED
        logger.info("Claimed pid file", extra={"pid_file": str(self.path), "pid": self.pid})
        return self.path

    def _create(self) -> None:
        pid = os.getpid()
        try:
            fd = self._open_exclusive()
        except FileExistsError:
            existing = read_pid(self.path)
            if not (self.reclaim_stale and self._remove_stale(existing)):
                raise AlreadyRunningError(self.path, existing) from None
            try:
                fd = self._open_exclusive()
            except FileExistsError:
                raise AlreadyRunningError(self.path, read_pid(self.path)) from None
            except OSError as exc:
                raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc
        except OSError as exc:
            raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc

        try:
            with os.fdopen(fd, "w", encoding="ascii") as handle:
                handle.write(str(pid))
        except OSError as exc:
            self._discard_partial()
            raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc
        self.pid = pid

    def _open_exclusive(self) -> int:
        return os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, PID_FILE_MODE)

    def _remove_stale(self, existing: Optional[int]) -> bool:
        """Move a dead instance's PID file aside; the caller retries the create.

        The file is renamed to a private name before it is checked again, so a
        fresh claim made by another process after ``existing`` was read is put
        back instead of deleted.
        """

        # An unreadable file may belong to an instance that has not written yet.
        if existing is None or pid_alive(existing):
            return False
        aside = self.path.with_name(f".{self.path.name}.stale.{os.getpid()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True
        except OSError as exc:
            raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc

        current = read_pid(aside)
        if current != existing:
            self._restore(aside)
            raise AlreadyRunningError(self.path, current)
        logger.warning(
            "Removing stale pid file",
            extra={"pid_file": str(self.path), "stale_pid": existing},
        )
        try:
            aside.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc
        return True

    def _restore(self, aside: Path) -> None:
        try:
            os.link(aside, self.path)
        except FileExistsError:
            logger.warning("Pid file %s was recreated while checking it", self.path)
        except OSError as exc:
            raise PidFileIOError(self.path, exc.strerror or str(exc)) from exc
        finally:
            try:
                aside.unlink()
            except FileNotFoundError:
                pass

    def _discard_partial(self) -> None:
        try:
            self.path.unlink()
        except OSError:
            logger.warning("Could not remove partially written pid file %s", self.path)

    def release(self) -> bool:
        """Remove the PID file if this process still owns it."""

        if self.state != ClaimState.CLAIMED or self._released:
            return False
        if read_pid(self.path) != self.pid:
            logger.warning("Pid file %s no longer records pid %s; leaving it", self.path, self.pid)
            return False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        self._released = True
        logger.info("Released pid file", extra={"pid_file": str(self.path)})
        return True


__all__ = [
    "AlreadyRunningError",
    "ClaimState",
    "InstanceGuardError",
    "PidFile",
    "PidFileIOError",
    "pid_alive",
    "read_pid",
]
