"""Configuration loader for routerctl.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults (the dataclass defaults below).
2. ``/etc/routerctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``ROUTERCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export ROUTERCTL_SYSTEM__SOCKETS_DIR=/run/mysqlrouter
    export ROUTERCTL_CONNECT_TIMEOUT=10

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml

ENV_PREFIX = "ROUTERCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
DEFAULT_CONFIG_FILE = Path("/etc/routerctl/config.yml")

ALLOWED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


def _plain(value: object) -> object:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


@dataclass(frozen=True)
class SystemDeploymentConfig:
    """Fixed locations used by system-wide deployments."""

    config_file: Path = Path("/etc/mysqlrouter/mysqlrouter.conf")
    keyring_path: Path = Path("/var/lib/mysqlrouter/keyring")
    master_key_path: Path | None = None
    sockets_dir: Path = Path("/tmp")


@dataclass(frozen=True)
class DirectoryDeploymentConfig:
    """File names used inside directory-scoped deployments."""

    config_name: str = "mysqlrouter.conf"
    keyring_name: str = "keyring"
    pid_name: str = "mysqlrouter.pid"


@dataclass(frozen=True)
class EndpointsConfig:
    """Listener defaults applied when the operator does not override them."""

    bind_address: str = "0.0.0.0"


_SECTIONS: dict[str, type] = {
    "system": SystemDeploymentConfig,
    "directory": DirectoryDeploymentConfig,
    "endpoints": EndpointsConfig,
}

_SCALAR_DEFAULTS: dict[str, object] = {
    "logs_dir": "/var/log/routerctl",
    "templates_dir": "/etc/routerctl/templates",
    "router_executable": "mysqlrouter",
    "connect_timeout": 5.0,
    "metadata_ttl": 300,
    "log_level": "INFO",
}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for routerctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    router_executable: str
    connect_timeout: float
    metadata_ttl: int
    log_level: str
    system: SystemDeploymentConfig
    directory: DirectoryDeploymentConfig
    endpoints: EndpointsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {key: _plain(value) for key, value in asdict(self).items()}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    if config_file:
        path = Path(config_file)
    else:
        path = Path(environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE))

    merged: dict[str, object] = copy.deepcopy(_SCALAR_DEFAULTS)
    for layer in (_read_file(path), _environment_layer(environ), dict(overrides or {})):
        _merge(merged, layer)

    unknown = set(merged) - set(_SCALAR_DEFAULTS) - set(_SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")

    return AppConfig(
        config_file=path,
        logs_dir=_path(merged["logs_dir"], "logs_dir"),
        templates_dir=_path(merged["templates_dir"], "templates_dir"),
        router_executable=_non_empty(merged["router_executable"], "router_executable"),
        connect_timeout=_timeout(merged["connect_timeout"]),
        metadata_ttl=_ttl(merged["metadata_ttl"]),
        log_level=_log_level(merged["log_level"]),
        system=_system_section(_section(merged, "system")),
        directory=_directory_section(_section(merged, "directory")),
        endpoints=EndpointsConfig(
            bind_address=_non_empty(
                _section(merged, "endpoints").get("bind_address", "0.0.0.0"),
                "endpoints.bind_address",
            )
        ),
    )


def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _string_keys(data, str(path))


def _environment_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for key, raw in environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_ENV_VAR:
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        node = layer
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} nests under a scalar value.")
            node = child
        try:
            node[segments[-1]] = yaml.safe_load(raw.strip())
        except yaml.YAMLError:
            node[segments[-1]] = raw.strip()
    return layer


def _merge(target: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge(current, value)
        elif isinstance(value, Mapping):
            target[key] = _string_keys(value, key)
        else:
            target[key] = value


def _string_keys(mapping: Mapping[object, object], label: str) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in mapping.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = value
    return result


def _section(merged: Mapping[str, object], name: str) -> dict[str, object]:
    raw = merged.get(name)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Expected {name} to be a mapping. Got {type(raw).__name__}.")
    allowed = {item.name for item in fields(_SECTIONS[name])}
    unknown = set(raw) - allowed
    if unknown:
        raise ConfigError(
            f"Unknown {name} configuration keys: {', '.join(sorted(map(str, unknown)))}."
        )
    return dict(raw)


def _system_section(values: Mapping[str, object]) -> SystemDeploymentConfig:
    defaults = SystemDeploymentConfig()
    master_key = values.get("master_key_path")
    return SystemDeploymentConfig(
        config_file=_path(values.get("config_file", defaults.config_file), "system.config_file"),
        keyring_path=_path(
            values.get("keyring_path", defaults.keyring_path), "system.keyring_path"
        ),
        master_key_path=_path(master_key, "system.master_key_path") if master_key else None,
        sockets_dir=_path(values.get("sockets_dir", defaults.sockets_dir), "system.sockets_dir"),
    )


def _directory_section(values: Mapping[str, object]) -> DirectoryDeploymentConfig:
    defaults = asdict(DirectoryDeploymentConfig())
    names: dict[str, str] = {}
    for key, default in defaults.items():
        name = _non_empty(values.get(key, default), f"directory.{key}")
        if "/" in name or "\\" in name:
            raise ConfigError(f"directory.{key} must be a plain file name. Got {name!r}.")
        names[key] = name
    return DirectoryDeploymentConfig(**names)


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)) and str(value).strip():
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _non_empty(value: object, label: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ConfigError(f"{label} must be a non-empty string.")
    return text


def _timeout(value: object) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected connect_timeout to be a number. Got boolean {value!r}.")
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for connect_timeout: {value!r}.") from exc
    if seconds <= 0:
        raise ConfigError(f"connect_timeout must be greater than zero. Got {seconds}.")
    return seconds


def _ttl(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"Expected metadata_ttl to be an integer. Got {value!r}.")
    try:
        seconds = int(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for metadata_ttl: {value!r}.") from exc
    if seconds < 0:
        raise ConfigError("metadata_ttl must be non-negative.")
    return seconds


def _log_level(value: object) -> str:
    level = str(value).upper()
    if level not in ALLOWED_LOG_LEVELS:
        raise ConfigError(
            f"Unsupported log_level '{value}'. Allowed: {', '.join(ALLOWED_LOG_LEVELS)}."
        )
    return level


__all__ = [
    "AppConfig",
    "ConfigError",
    "DirectoryDeploymentConfig",
    "EndpointsConfig",
    "SystemDeploymentConfig",
    "load_config",
]
