from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import yaml

from checklist_templates import ResourceLimits, SubstitutionConfig
from perf_monitor import DashboardConfig, MonitorConfig, RegressionConfig

CONFIG_VERSION = 1
DEFAULT_CONFIG_PATH = Path("configs") / "checklist.yaml"

_TOP_LEVEL_KEYS: frozenset[str] = frozenset(
    {
        "version",
        "templates_dir",
        "state_file",
        "performance",
        "regression",
        "dashboard",
        "substitution",
        "cache",
        "sandbox",
    }
)

_T = TypeVar("_T")


class ConfigError(ValueError):
    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


@dataclass(frozen=True)
class CacheSettings:
    max_size: int = 100
    max_age: float = 3600.0


@dataclass(frozen=True)
class AppConfig:
    version: int = CONFIG_VERSION
    templates_dir: Path = Path("templates")
    state_file: Path | None = None
    performance: MonitorConfig = field(default_factory=MonitorConfig)
    regression: RegressionConfig = field(default_factory=RegressionConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    substitution: SubstitutionConfig = field(default_factory=SubstitutionConfig)
    cache: CacheSettings = field(default_factory=CacheSettings)
    sandbox: ResourceLimits = field(default_factory=ResourceLimits)
    source_path: Path | None = None


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(raw).__name__}.")
    return raw


def _ensure_no_unknown_keys(
    *, data: Mapping[str, Any], allowed: frozenset[str] | set[str], where: str
) -> None:
    unknown = set(data) - set(allowed)
    if not unknown:
        return
    unknown_list = ", ".join(sorted(str(k) for k in unknown))
    allowed_list = ", ".join(sorted(allowed))
    raise ConfigError(
        f"Unknown keys in {where}: {unknown_list}. Allowed: {allowed_list}.",
        code="unknown_keys",
        details={"where": where, "unknown": sorted(str(k) for k in unknown)},
    )


def _coerce(value: Any, expected: Any, *, where: str) -> Any:
    if isinstance(expected, bool):
        if isinstance(value, bool):
            return value
        raise ConfigError(f"{where} must be a boolean, got {value!r}.")
    if isinstance(expected, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ConfigError(f"{where} must be an integer, got {value!r}.")
    if isinstance(expected, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ConfigError(f"{where} must be a number, got {value!r}.")
    if isinstance(expected, str):
        if isinstance(value, str):
            return value
        raise ConfigError(f"{where} must be a string, got {value!r}.")
    raise ConfigError(f"{where} cannot be set from configuration.")


def _parse_section(raw: Any, cls: type[_T], *, name: str, path: Path) -> _T:
    """Build a flat settings dataclass from a mapping, rejecting unknown or mistyped keys."""

    if raw is None:
        return cls()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Section {name!r} in {path} must be a mapping.")

    defaults = cls()
    settable = {
        f.name
        for f in dataclasses.fields(cls)  # type: ignore[arg-type]
        if isinstance(getattr(defaults, f.name), (bool, int, float, str))
    }
    _ensure_no_unknown_keys(data=raw, allowed=settable, where=f"{path} [{name}]")

    values = {
        key: _coerce(value, getattr(defaults, key), where=f"{name}.{key}")
        for key, value in raw.items()
    }
    try:
        return cls(**values)
    except ValueError as e:
        raise ConfigError(f"Invalid {name!r} section in {path}: {e}") from e


def _resolve_dir(raw: Any, *, root: Path, key: str, path: Path) -> Path:
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"{key} in {path} must be a non-empty string.")
    candidate = Path(raw)
    return candidate if candidate.is_absolute() else (root / candidate)


def parse_app_config(data: Mapping[str, Any], *, path: Path) -> AppConfig:
    _ensure_no_unknown_keys(data=data, allowed=_TOP_LEVEL_KEYS, where=str(path))

    version = data.get("version")
    if version is None:
        raise ConfigError(f"Missing required version in {path}.")
    if version != CONFIG_VERSION:
        raise ConfigError(f"Unsupported config version {version} in {path}.")

    root = path.parent
    templates_dir = _resolve_dir(
        data.get("templates_dir", "templates"), root=root, key="templates_dir", path=path
    )
    state_raw = data.get("state_file")
    state_file = (
        None
        if state_raw is None
        else _resolve_dir(state_raw, root=root, key="state_file", path=path)
    )

    return AppConfig(
        version=CONFIG_VERSION,
        templates_dir=templates_dir,
        state_file=state_file,
        performance=_parse_section(
            data.get("performance"), MonitorConfig, name="performance", path=path
        ),
        regression=_parse_section(
            data.get("regression"), RegressionConfig, name="regression", path=path
        ),
        dashboard=_parse_section(
            data.get("dashboard"), DashboardConfig, name="dashboard", path=path
        ),
        substitution=_parse_section(
            data.get("substitution"), SubstitutionConfig, name="substitution", path=path
        ),
        cache=_parse_section(data.get("cache"), CacheSettings, name="cache", path=path),
        sandbox=_parse_section(data.get("sandbox"), ResourceLimits, name="sandbox", path=path),
        source_path=path,
    )


def apply_env_overrides(config: AppConfig) -> AppConfig:
    templates_dir = config.templates_dir
    raw_dir = os.environ.get("CHECKLIST_TEMPLATES_DIR")
    if raw_dir:
        templates_dir = Path(raw_dir)
    try:
        return dataclasses.replace(
            config,
            templates_dir=templates_dir,
            performance=MonitorConfig.from_env(config.performance),
            regression=RegressionConfig.from_env(config.regression),
            dashboard=DashboardConfig.from_env(config.dashboard),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e


def load_app_config(path: Path | None = None, *, cwd: Path | None = None) -> AppConfig:
    """
    Load `configs/checklist.yaml` (or `path`) and apply environment overrides.

    Without an explicit path a missing default file is not an error: built-in
    defaults are used with `templates/` relative to `cwd`.
    """

    base_dir = cwd or Path.cwd()
    if path is None:
        candidate = base_dir / DEFAULT_CONFIG_PATH
        if not candidate.exists():
            return apply_env_overrides(AppConfig(templates_dir=base_dir / "templates"))
        path = candidate
    elif not path.exists():
        raise ConfigError(f"Config file not found: {path}", code="not_found")

    return apply_env_overrides(parse_app_config(_load_yaml_mapping(path), path=path))
