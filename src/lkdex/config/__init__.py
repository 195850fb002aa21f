"""Daemon configuration: models, defaults and layered loading."""

from .loader import ConfigFileError, flatten_config, load_config, unflatten_config
from .settings import (
    BaseConfig,
    Config,
    DaemonConfig,
    RPCConfig,
    RotateConfig,
    default_config,
    rootify,
)

__all__ = [
    "BaseConfig",
    "Config",
    "ConfigFileError",
    "DaemonConfig",
    "RPCConfig",
    "RotateConfig",
    "default_config",
    "flatten_config",
    "load_config",
    "rootify",
    "unflatten_config",
]
