"""Layered loading of the daemon configuration.

Defaults are overlaid, in order, by the TOML config file, ``LKDEX_*``
environment variables (and ``.env``), explicit overrides and finally the
``home`` argument. The file and override layers use the flat key layout
(base keys at the top level); the model itself keeps them under ``base``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union, cast

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .settings import BaseConfig, Config, default_config, default_home

CONFIG_FILE_ENV_VAR = "LKDEX_CONFIG_FILE"
DEFAULT_CONFIG_FILE_NAME = "config.toml"
ENV_PREFIX = "LKDEX_"

SECTIONS = ("daemon", "wallet_daemon", "rpc", "log")

PathLike = Union[str, Path]


class ConfigFileError(ValueError):
    """Raised when a configuration file is missing or cannot be decoded."""


class EnvOverrides(BaseSettings):
    """Raw override values collected from the environment and ``.env``."""

    base: Dict[str, Any] = Field(default_factory=dict)
    daemon: Dict[str, Any] = Field(default_factory=dict)
    wallet_daemon: Dict[str, Any] = Field(default_factory=dict)
    rpc: Dict[str, Any] = Field(default_factory=dict)
    log: Dict[str, Any] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def as_payload(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump().items()
            if value
        }


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``base`` overlaid with ``override``; neither input is mutated."""

    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def _canonical_base_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    # Accept both the attribute name and the serialized key; keep the attribute.
    aliases = {
        field_info.alias: name
        for name, field_info in BaseConfig.model_fields.items()
        if field_info.alias
    }
    return {aliases.get(key, key): value for key, value in payload.items()}


def unflatten_config(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert the flat key layout into the nested ``Config`` layout."""

    nested: Dict[str, Any] = {}
    base: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in SECTIONS and isinstance(value, Mapping):
            nested[key] = dict(value)
        elif key == "base" and isinstance(value, Mapping):
            base.update(value)
        else:
            base[key] = value
    if base:
        nested["base"] = _canonical_base_keys(base)
    return nested


def flatten_config(config: Config) -> Dict[str, Any]:
    """Serialize ``config`` using the flat key layout."""

    payload = config.model_dump(by_alias=True)
    flat: Dict[str, Any] = dict(payload.pop("base"))
    flat.update(payload)
    return flat


def resolve_config_path(
    config_file: Optional[PathLike] = None,
    home: Optional[PathLike] = None,
    *,
    use_env: bool = True,
) -> Optional[Path]:
    """Pick the config file to read, or ``None`` when there is nothing to load.

    ``$LKDEX_CONFIG_FILE`` is only consulted when ``use_env`` is set.
    """

    if config_file is not None:
        return Path(config_file)
    env_value = os.getenv(CONFIG_FILE_ENV_VAR) if use_env else None
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    if home:
        candidate = Path(home) / DEFAULT_CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_toml_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigFileError(f"config file not found: {path}") from exc
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigFileError(f"unable to read config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigFileError(f"config file {path} must contain a table at its root")
    return payload


def load_env_overrides() -> Dict[str, Any]:
    return EnvOverrides().as_payload()


def load_config(
    *,
    config_file: Optional[PathLike] = None,
    home: Optional[PathLike] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    use_env: bool = True,
) -> Config:
    """Build the process configuration from defaults and override layers."""

    merged = default_config().model_dump()

    env_payload: Dict[str, Any] = {}
    if use_env:
        env_payload = load_env_overrides()
        if "base" in env_payload:
            env_payload["base"] = _canonical_base_keys(cast(Dict[str, Any], env_payload["base"]))
    override_payload = unflatten_config(overrides) if overrides else {}

    # The file is looked up under the most specific root known before reading it.
    search_home = (
        home
        or override_payload.get("base", {}).get("root_dir")
        or env_payload.get("base", {}).get("root_dir")
        or default_home()
    )
    path = resolve_config_path(config_file, search_home, use_env=use_env)
    if path is not None:
        merged = deep_merge(merged, unflatten_config(load_toml_file(path)))

    merged = deep_merge(merged, env_payload)
    merged = deep_merge(merged, override_payload)
    if home is not None:
        merged = deep_merge(merged, {"base": {"root_dir": str(home)}})
    if not merged["base"].get("root_dir"):
        merged = deep_merge(merged, {"base": {"root_dir": str(default_home())}})

    return Config.model_validate(merged)


__all__ = [
    "CONFIG_FILE_ENV_VAR",
    "ConfigFileError",
    "EnvOverrides",
    "deep_merge",
    "flatten_config",
    "load_config",
    "load_env_overrides",
    "load_toml_file",
    "resolve_config_path",
    "unflatten_config",
]
