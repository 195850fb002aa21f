"""Entrypoint for the lkdex daemon."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config.loader import ConfigFileError, flatten_config, load_config
from .config.settings import Config
from .monitoring.logger import configure_logging, get_logger
from .process import InstanceGuardError, claim_instance

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_GUARD_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def prepare_directories(config: Config) -> None:
    for directory in (config.log_dir(), config.db_dir(), config.keystore_dir()):
        directory.mkdir(parents=True, exist_ok=True)


async def run_async(
    config: Config,
    *,
    stop_event: Optional[asyncio.Event] = None,
    reclaim_stale: bool = False,
) -> None:
    """Claim the instance, then hold it until ``stop_event`` is set."""

    prepare_directories(config)
    guard = claim_instance(config, reclaim_stale=reclaim_stale)

    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: List[signal.Signals] = []
    if stop_event is None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(sig)

    logger.info(
        "lkdex started",
        extra={
            "home": config.base.root_dir,
            "db_backend": config.base.db_backend,
            "db_dir": str(config.db_dir()),
            "ipc_file": str(config.ipc_file()),
        },
    )
    try:
        await stop.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        guard.release()
        logger.info("lkdex stopped")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lkdex", description="Run the lkdex daemon")
    parser.add_argument("--home", default=None, help="Root directory for all daemon data.")
    parser.add_argument("--config", default=None, help="Path to a TOML config file.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    parser.add_argument("--pidfile", default=None, help="PID file path, relative to --home.")
    parser.add_argument("--db-backend", default=None, help="Database backend (leveldb | memdb).")
    parser.add_argument(
        "--log-to-file",
        action="store_true",
        help="Also write logs under the configured log directory.",
    )
    parser.add_argument(
        "--reclaim-stale",
        action="store_true",
        help="Replace a PID file whose recorded process is no longer alive.",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the resolved configuration as JSON and exit.",
    )
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.pidfile is not None:
        overrides["pidfile"] = args.pidfile
    if args.db_backend is not None:
        overrides["db_backend"] = args.db_backend
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        config = load_config(
            config_file=args.config,
            home=args.home,
            overrides=_cli_overrides(args),
        )
    except (ConfigFileError, ValidationError) as exc:
        print(f"lkdex: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.print_config:
        print(json.dumps(flatten_config(config), indent=2, sort_keys=True))
        return EXIT_OK

    try:
        configure_logging(config, log_to_file=args.log_to_file)
        asyncio.run(run_async(config, reclaim_stale=args.reclaim_stale))
    except InstanceGuardError as exc:
        logger.error("Startup aborted: %s", exc, extra={"pid_file": str(exc.path)})
        print(f"lkdex: {exc}", file=sys.stderr)
        return EXIT_GUARD_FAILURE
    except OSError as exc:
        logger.error("Startup aborted: %s", exc)
        print(f"lkdex: startup failed: {exc}", file=sys.stderr)
        return EXIT_GUARD_FAILURE
    except KeyboardInterrupt:
        pass
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
