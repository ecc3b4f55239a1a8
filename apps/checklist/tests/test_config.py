from __future__ import annotations

from pathlib import Path

import pytest

from checklist.config import AppConfig, ConfigError, load_app_config, parse_app_config

_ENV_VARS = (
    "CHECKLIST_TEMPLATES_DIR",
    "PERFORMANCE_MONITORING",
    "PERFORMANCE_BUFFER_SIZE",
    "PERFORMANCE_REGRESSION_THRESHOLD",
    "PERFORMANCE_DASHBOARD",
    "DASHBOARD_DISPLAY_MODE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "configs" / "checklist.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_app_config(cwd=tmp_path)
    assert config.templates_dir == tmp_path / "templates"
    assert config.state_file is None
    assert config.source_path is None
    assert config.regression.threshold == 20
    assert config.cache.max_size == 100


def test_default_config_file_is_discovered(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        "version: 1\n"
        "templates_dir: ../tpl\n"
        "state_file: ../state/vars.yaml\n"
        "regression:\n  threshold: 35\n"
        "cache:\n  max_size: 5\n  max_age: 60\n"
        "sandbox:\n  execution_time: 2\n",
    )
    config = load_app_config(cwd=tmp_path)
    assert config.source_path == path
    assert config.templates_dir == path.parent / "../tpl"
    assert config.state_file == path.parent / "../state/vars.yaml"
    assert config.regression.threshold == 35.0
    assert config.cache.max_age == 60.0
    assert config.sandbox.execution_time == 2.0


def test_explicit_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found") as exc:
        load_app_config(tmp_path / "nope.yaml")
    assert exc.value.code == "not_found"


def test_version_is_required(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Missing required version"):
        parse_app_config({"templates_dir": "t"}, path=tmp_path / "c.yaml")
    with pytest.raises(ConfigError, match="Unsupported config version 2"):
        parse_app_config({"version": 2}, path=tmp_path / "c.yaml")


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Unknown keys in .*: colour. Allowed: ") as exc:
        parse_app_config({"version": 1, "colour": "red"}, path=tmp_path / "c.yaml")
    assert exc.value.code == "unknown_keys"

    with pytest.raises(ConfigError, match=r"\[cache\]"):
        parse_app_config({"version": 1, "cache": {"size": 1}}, path=tmp_path / "c.yaml")


def test_section_values_are_type_checked(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="performance.enabled must be a boolean"):
        parse_app_config(
            {"version": 1, "performance": {"enabled": "yes"}}, path=tmp_path / "c.yaml"
        )
    with pytest.raises(ConfigError, match="must be a mapping"):
        parse_app_config({"version": 1, "dashboard": ["console"]}, path=tmp_path / "c.yaml")


def test_invalid_section_values(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Invalid 'sandbox' section"):
        parse_app_config(
            {"version": 1, "sandbox": {"execution_time": 0}}, path=tmp_path / "c.yaml"
        )


def test_broken_yaml(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "version: [1\n")
    with pytest.raises(ConfigError, match="Failed to parse YAML"):
        load_app_config(path)


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECKLIST_TEMPLATES_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("PERFORMANCE_REGRESSION_THRESHOLD", "42")
    monkeypatch.setenv("PERFORMANCE_MONITORING", "false")
    config = load_app_config(cwd=tmp_path)
    assert config.templates_dir == tmp_path / "elsewhere"
    assert config.regression.threshold == 42.0
    assert config.performance.enabled is False


def test_app_config_is_frozen() -> None:
    config = AppConfig()
    with pytest.raises(AttributeError):
        config.templates_dir = Path("x")  # type: ignore[misc]
