from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

from lkdex.monitoring import logger as logger_module


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep the user's environment, ``.env`` and ``~/.lkdex`` out of every test."""

    for key in list(os.environ):
        if key.upper().startswith("LKDEX_"):
            monkeypatch.delenv(key, raising=False)
    user_home = tmp_path / "user-home"
    user_home.mkdir()
    monkeypatch.setenv("HOME", str(user_home))
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    yield
    logger_module._LOGGING_CONFIGURED = False
    logger_module.configure_logging()


@pytest.fixture
def root_dir(tmp_path: Path) -> Path:
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def dead_pid() -> int:
    """PID of a process that has already exited."""

    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid
