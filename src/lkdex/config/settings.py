"""Configuration models and compiled-in defaults for the lkdex daemon."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_DEX_DIR = "lkdex"
DEFAULT_DATA_DIR = "data"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE_NAME = "dex.log"
DEFAULT_PID_FILE = "dex.pid"
DEFAULT_IPC_FILE = "dex.ipc"

PathLike = Union[str, Path]


def rootify(path: PathLike, root: PathLike) -> Path:
    """Resolve ``path`` against ``root`` unless it is already absolute."""

    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return Path(root) / candidate


def _coerce_list(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            return json.loads(text)
        return [item.strip() for item in text.split(",") if item.strip()]
    return value


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="ignore")


class BaseConfig(_Section):
    """Top level daemon options; path fields are relative to ``root_dir``."""

    password: str = ""
    password_file: str = ""
    keystore_file: str = ""
    kdf_rounds: int = 1
    detach: bool = False
    max_concurrency: int = 1
    pidfile: str = DEFAULT_PID_FILE
    log_level: str = "debug"
    root_dir: str = Field(default="", alias="home")
    db_backend: str = "leveldb"
    db_path: str = DEFAULT_DATA_DIR
    keystore_path: str = Field(default="", alias="keystore_dir")
    log_path: str = Field(default=DEFAULT_LOG_DIR, alias="log_dir")
    log_file: str = ""
    test_net: bool = False
    contract_addr: str = ""

    def log_dir(self) -> Path:
        return rootify(self.log_path, self.root_dir)

    def db_dir(self) -> Path:
        return rootify(self.db_path, self.root_dir)

    def keystore_dir(self) -> Path:
        return rootify(self.keystore_path, self.root_dir)

    def pid_file_dir(self) -> Path:
        """Full path of the PID file (not its parent directory)."""

        return rootify(self.pidfile, self.root_dir)


class DaemonConfig(_Section):
    """Connection settings for a remote daemon peer.

    Field defaults describe the main daemon; the wallet daemon preset is
    applied by ``Config`` for the ``wallet_daemon`` section.
    """

    peer_rpc: str = "http://127.0.0.1:8000"
    peer_ws: str = "ws://127.0.0.1:8001"
    login: str = ""
    trusted: bool = True
    testnet: bool = True


WALLET_DAEMON_PRESET: Dict[str, Any] = {"peer_rpc": "http://127.0.0.1:18082", "peer_ws": ""}


class RPCConfig(_Section):
    """Local IPC/HTTP/WS endpoints exposed by the daemon."""

    ipc_endpoint: str = DEFAULT_IPC_FILE
    http_endpoint: str = "127.0.0.1:18804"
    http_modules: List[str] = Field(default_factory=lambda: ["wlt", "dex"])
    http_cores: List[str] = Field(default_factory=lambda: ["*"])
    vhosts: List[str] = Field(default_factory=lambda: ["*"])
    ws_endpoint: str = "127.0.0.1:18805"
    ws_modules: List[str] = Field(default_factory=lambda: ["wlt", "dex"])
    ws_origins: List[str] = Field(default_factory=lambda: ["*"])
    ws_expose_all: bool = True

    @field_validator(
        "http_modules", "http_cores", "vhosts", "ws_modules", "ws_origins", mode="before"
    )
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        return _coerce_list(value)


class RotateConfig(_Section):
    """Shape of the log rotation policy handed to the logging collaborator."""

    filename: str = DEFAULT_LOG_FILE_NAME
    daily: bool = True
    max_days: int = 7
    rotate: bool = True
    rotate_perm: str = "0444"
    perm: str = "0664"


class Config(_Section):
    """Aggregated daemon configuration."""

    base: BaseConfig = Field(default_factory=BaseConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    wallet_daemon: DaemonConfig = Field(default_factory=lambda: default_wallet_daemon_config())
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    log: RotateConfig = Field(default_factory=RotateConfig)

    @field_validator("wallet_daemon", mode="before")
    @classmethod
    def _wallet_preset(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {**WALLET_DAEMON_PRESET, **value}
        return value

    @property
    def root_dir(self) -> Path:
        return Path(self.base.root_dir)

    def log_dir(self) -> Path:
        return self.base.log_dir()

    def db_dir(self) -> Path:
        return self.base.db_dir()

    def keystore_dir(self) -> Path:
        return self.base.keystore_dir()

    def pid_file_dir(self) -> Path:
        return self.base.pid_file_dir()

    def ipc_file(self) -> Path:
        return rootify(self.rpc.ipc_endpoint, self.base.root_dir)


def default_base_config() -> BaseConfig:
    return BaseConfig()


def default_daemon_config() -> DaemonConfig:
    """Main daemon peer: local RPC and WS pair."""

    return DaemonConfig()


def default_wallet_daemon_config() -> DaemonConfig:
    """Wallet daemon peer: RPC only, no WS endpoint."""

    return DaemonConfig(**WALLET_DAEMON_PRESET)


def default_rpc_config() -> RPCConfig:
    return RPCConfig()


def default_rotate_config() -> RotateConfig:
    return RotateConfig()


def default_config() -> Config:
    """Return a freshly built configuration tree holding only defaults."""

    return Config()


def default_log_level() -> str:
    return "debug"


def default_home() -> Path:
    """Root directory used when no ``home`` override is supplied."""

    return Path.home() / f".{DEFAULT_DEX_DIR}"


__all__ = [
    "BaseConfig",
    "Config",
    "DaemonConfig",
    "DEFAULT_DEX_DIR",
    "RPCConfig",
    "RotateConfig",
    "default_base_config",
    "default_config",
    "default_daemon_config",
    "default_home",
    "default_log_level",
    "default_rotate_config",
    "default_rpc_config",
    "default_wallet_daemon_config",
    "rootify",
]
