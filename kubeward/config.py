"""TOML-based manager configuration.

Loads ~/.kubeward/defaults.toml (global) and kubeward.toml (project),
merges them, and resolves the result (plus command-line overrides) into a
ManagerConfig.

    [manager]
    profile = "minikube"
    storage_path = "~/.minikube"
    reconcile_timeout = 60

    [log]
    level = "DEBUG"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from kubeward.core.exceptions import ConfigurationError
from kubeward.observability.logger import parse_size
from kubeward.observability.logging import LOG_LEVELS, LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".kubeward" / "defaults.toml"
PROJECT_CONFIG_NAME = "kubeward.toml"


@dataclass(frozen=True, slots=True)
class ManagerConfig:
    """Everything the manager process needs to start.

    Attributes
    ----------
    storage_path
        Root of the minikube state directory holding ``profiles/``.
    profile
        Profile used when a KubeCluster names none and its Cluster's name is
        not a profile either. Informational for the reconcilers.
    metrics_bind_address
        ``host:port`` for ``/metrics``; ``"0"`` disables the endpoint.
    health_probe_bind_address
        ``host:port`` for ``/healthz`` and ``/readyz``; ``"0"`` disables them.
    reconcile_timeout
        Upper bound, in seconds, of a single reconcile pass.
    backoff_base, backoff_max
        Per-object retry backoff after failed passes, in seconds.
    minikube_binary
        Executable used for node operations.
    provisioner_timeout
        Upper bound, in seconds, of one provisioner command.
    manifest
        Optional resource manifest applied to the store at startup.
    """

    storage_path: Path = Path("~/.minikube")
    profile: str = "minikube"
    metrics_bind_address: str = ":8080"
    health_probe_bind_address: str = ":8081"
    reconcile_timeout: float = 60.0
    backoff_base: float = 1.0
    backoff_max: float = 300.0
    minikube_binary: str = "minikube"
    provisioner_timeout: float = 600.0
    manifest: Path | None = None
    log: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("manager", {})
    merged.setdefault("log", {})
    return merged


def _check_keys(section: str, raw: RawConfig, allowed: set[str]) -> None:
    unknown = set(raw) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [{section}]: {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(allowed))}"
        )


def _build_log(raw: RawConfig) -> LogConfig:
    _check_keys("log", raw, {f.name for f in fields(LogConfig)})
    log = LogConfig(**raw)
    if log.level not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level {log.level!r}, expected one of {', '.join(LOG_LEVELS)}")
    try:
        parse_size(log.rotation)
    except ValueError as e:
        raise ConfigurationError(f"Invalid log rotation: {e}") from e
    return log


def resolve_config(
    overrides: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ManagerConfig:
    """Merge config files and overrides into a ManagerConfig.

    ``overrides`` holds ``[manager]`` keys (``None`` values are ignored) plus
    an optional ``log_level``.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)

    raw_manager = dict(config["manager"])
    raw_log = dict(config["log"])
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "log_level":
            raw_log["level"] = value
        else:
            raw_manager[key] = value

    allowed = {f.name for f in fields(ManagerConfig)} - {"log"}
    _check_keys("manager", raw_manager, allowed)

    if "storage_path" in raw_manager:
        raw_manager["storage_path"] = Path(raw_manager["storage_path"])
    if raw_manager.get("manifest") is not None:
        raw_manager["manifest"] = Path(raw_manager["manifest"])
    for key in ("reconcile_timeout", "backoff_base", "backoff_max", "provisioner_timeout"):
        if key in raw_manager:
            try:
                raw_manager[key] = float(raw_manager[key])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{key} must be a number, got {raw_manager[key]!r}") from e

    resolved = ManagerConfig(log=_build_log(raw_log), **raw_manager)
    for key in ("reconcile_timeout", "provisioner_timeout"):
        if getattr(resolved, key) <= 0:
            raise ConfigurationError(f"{key} must be positive")
    if resolved.backoff_base <= 0 or resolved.backoff_max < resolved.backoff_base:
        raise ConfigurationError("backoff_base must be positive and not exceed backoff_max")
    return resolved
