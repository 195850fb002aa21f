from __future__ import annotations

import asyncio
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

import lkdex
from lkdex import main as main_module
from lkdex.config.loader import load_config
from lkdex.main import EXIT_CONFIG_ERROR, EXIT_GUARD_FAILURE, EXIT_OK, main, run_async
from lkdex.process import claim_instance
from lkdex.process.pidfile import AlreadyRunningError

SRC_DIR = Path(lkdex.__file__).resolve().parent.parent


def test_print_config_outputs_flat_json(root_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["--home", str(root_dir), "--db-backend", "memdb", "--print-config"])

    assert code == EXIT_OK
    payload = json.loads(capsys.readouterr().out)
    assert payload["home"] == str(root_dir)
    assert payload["db_backend"] == "memdb"
    assert payload["rpc"]["http_modules"] == ["wlt", "dex"]
    assert not (root_dir / "dex.pid").exists()


def test_invalid_config_exits_with_config_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["--config", str(tmp_path / "absent.toml"), "--print-config"])
    assert code == EXIT_CONFIG_ERROR
    assert "absent.toml" in capsys.readouterr().err


def test_existing_pid_file_aborts_startup(root_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    pid_path = root_dir / "dex.pid"
    pid_path.write_text("4242")

    code = main(["--home", str(root_dir)])

    assert code == EXIT_GUARD_FAILURE
    assert str(pid_path) in capsys.readouterr().err
    assert pid_path.read_text() == "4242"


def test_run_async_claims_and_releases(root_dir: Path) -> None:
    config = load_config(home=root_dir, use_env=False)
    observed = {}

    async def _exercise() -> None:
        stop = asyncio.Event()

        async def _stop_when_claimed() -> None:
            while not config.pid_file_dir().exists():
                await asyncio.sleep(0.01)
            observed["pid"] = config.pid_file_dir().read_text()
            stop.set()

        await asyncio.gather(run_async(config, stop_event=stop), _stop_when_claimed())

    asyncio.run(_exercise())

    assert observed["pid"] == str(os.getpid())
    assert not config.pid_file_dir().exists()
    assert config.log_dir().is_dir()
    assert config.db_dir().is_dir()


def test_run_async_propagates_already_running(root_dir: Path) -> None:
    config = load_config(home=root_dir, use_env=False)
    config.pid_file_dir().write_text("1")

    async def _exercise() -> None:
        stop = asyncio.Event()
        stop.set()
        await run_async(config, stop_event=stop)

    with pytest.raises(AlreadyRunningError):
        asyncio.run(_exercise())
    assert config.pid_file_dir().read_text() == "1"


def test_run_async_claims_through_claim_instance(
    root_dir: Path, dead_pid: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = load_config(home=root_dir, use_env=False)
    config.pid_file_dir().write_text(str(dead_pid))
    guards = []

    def recording_claim(cfg, *, reclaim_stale=False):
        guard = claim_instance(cfg, reclaim_stale=reclaim_stale)
        guards.append((guard, reclaim_stale))
        return guard

    monkeypatch.setattr(main_module, "claim_instance", recording_claim)

    async def _exercise() -> None:
        stop = asyncio.Event()
        stop.set()
        await run_async(config, stop_event=stop, reclaim_stale=True)

    asyncio.run(_exercise())

    assert len(guards) == 1
    guard, reclaim_stale = guards[0]
    assert reclaim_stale is True
    assert guard.path == config.pid_file_dir()
    assert guard.pid == os.getpid()
    assert not config.pid_file_dir().exists()


def test_second_process_refuses_to_start(root_dir: Path) -> None:
    pid_path = root_dir / "dex.pid"
    pid_path.write_text(str(os.getpid()))
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))

    result = subprocess.run(
        [sys.executable, "-m", "lkdex", "--home", str(root_dir)],
        capture_output=True,
        text=True,
        env=env,
        timeout=60,
    )

    assert result.returncode == EXIT_GUARD_FAILURE
    assert str(pid_path) in result.stderr
    assert pid_path.read_text() == str(os.getpid())
