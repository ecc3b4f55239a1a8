from __future__ import annotations

from checklist_templates import (
    MemoryLimitError,
    NestingDepthExceededError,
    TemplateCacheError,
    TemplateInheritanceError,
    TemplateLoadError,
    TemplateTimeoutError,
    TemplateValidationError,
    get_recovery_suggestion,
    is_template_error,
)


def test_load_error_carries_reason_and_recovery() -> None:
    err = TemplateLoadError("templates/a.yaml", "Template file not found")
    assert isinstance(err, ValueError)
    assert err.code == "TEMPLATE_LOAD_ERROR"
    assert err.recoverable is True
    assert err.reason == "Template file not found"
    assert err.template_path == "templates/a.yaml"
    assert "exists" in (err.recovery or "")
    assert str(err) == 'Failed to load template from "templates/a.yaml": Template file not found'


def test_load_error_yaml_recovery() -> None:
    err = TemplateLoadError("a.yaml", "YAML parsing failed: bad indent")
    assert err.recovery == "Verify the template file has valid YAML syntax"


def test_validation_error_lists_violations() -> None:
    err = TemplateValidationError("demo", ["$.id: required", "bad step"])
    assert err.violations == ["$.id: required", "bad step"]
    assert "  - bad step" in str(err)
    assert err.to_dict()["details"]["violations"] == ["$.id: required", "bad step"]


def test_inheritance_error_appends_chain() -> None:
    err = TemplateInheritanceError("child", "Circular inheritance detected", chain=["a", "b", "a"])
    assert str(err).endswith("Inheritance chain: a → b → a")
    assert err.chain == ["a", "b", "a"]
    assert err.details["issue"] == "Circular inheritance detected"


def test_specialized_codes() -> None:
    assert TemplateTimeoutError("t", 5000, "render").code == "TIMEOUT_ERROR"
    assert NestingDepthExceededError(5, 6).code == "NESTING_DEPTH_EXCEEDED"
    assert TemplateCacheError("get", "boom").code == "TEMPLATE_CACHE_ERROR"


def test_memory_limit_message_in_megabytes() -> None:
    err = MemoryLimitError("t", 20 * 1024 * 1024, 10 * 1024 * 1024)
    assert "20.00MB (limit: 10.00MB)" in str(err)


def test_to_dict_omits_unset_fields() -> None:
    payload = TemplateCacheError("set", "full").to_dict()
    assert payload["name"] == "TemplateCacheError"
    assert "template_id" not in payload
    assert payload["recoverable"] is True


def test_helpers() -> None:
    err = TemplateTimeoutError("t", 100)
    assert is_template_error(err)
    assert not is_template_error(ValueError("x"))
    assert get_recovery_suggestion(err) == err.recovery
    assert get_recovery_suggestion(RuntimeError("x")) is None
