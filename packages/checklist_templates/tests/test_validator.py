from __future__ import annotations

import copy
from typing import Any

import pytest

from checklist_templates import (
    TemplateValidationError,
    TemplateValidator,
    load_template_schema,
    validate_against_schema,
)

_BASE: dict[str, Any] = {
    "id": "deploy",
    "name": "Deploy",
    "version": "1.0.0",
    "description": "Deploy the service",
    "variables": [
        {"name": "env", "type": "string", "default": "staging"},
        {"name": "retries", "type": "number", "default": 3},
    ],
    "steps": [
        {
            "id": "build",
            "title": "Build",
            "commands": [{"id": "b1", "type": "npm", "content": "npm run build"}],
        },
        {
            "id": "ship",
            "title": "Ship to ${env}",
            "dependencies": ["build"],
            "commands": [{"id": "s1", "type": "bash", "content": "echo ${env}"}],
        },
    ],
}


def _template(**overrides: Any) -> dict[str, Any]:
    data = copy.deepcopy(_BASE)
    data.update(overrides)
    return data


def test_schema_is_packaged() -> None:
    schema = load_template_schema()
    assert schema["$schema"].endswith("2020-12/schema")
    assert "steps" in schema["required"]


def test_schema_errors_are_path_prefixed() -> None:
    data = _template(version="1.0")
    del data["name"]
    errors = validate_against_schema(data)
    assert any(e.startswith("$: ") and "'name' is a required property" in e for e in errors)
    assert any(e.startswith("$.version: ") for e in errors)


def test_valid_template() -> None:
    result = TemplateValidator().validate(_template())
    assert result.valid
    assert result.errors == []
    assert result.warnings == []


def test_schema_failure_short_circuits() -> None:
    result = TemplateValidator().validate(_template(steps=[]))
    assert not result.valid
    assert len(result.errors) == 1
    assert result.errors[0].startswith("$.steps: ")


def test_unknown_top_level_key_rejected() -> None:
    result = TemplateValidator().validate(_template(owner="me"))
    assert not result.valid
    assert "Additional properties are not allowed" in result.errors[0]


def test_default_type_mismatch() -> None:
    variables = [{"name": "flag", "type": "boolean", "default": "yes"}]
    result = TemplateValidator().validate(_template(variables=variables))
    assert result.errors == [
        'Variable "flag": default value type "string" does not match declared type "boolean"'
    ]


def test_bool_default_is_not_a_number() -> None:
    variables = [{"name": "count", "type": "number", "default": True}]
    result = TemplateValidator().validate(_template(variables=variables))
    assert not result.valid


def test_array_default_must_be_array() -> None:
    variables = [{"name": "tags", "type": "array", "default": "a"}]
    result = TemplateValidator().validate(_template(variables=variables))
    assert result.errors == ['Variable "tags": default value must be an array']


def test_missing_dependency() -> None:
    steps = [{"id": "a", "title": "A", "dependencies": ["ghost"]}]
    result = TemplateValidator().validate(_template(steps=steps))
    assert result.errors == ['Step "a": dependency "ghost" does not exist']


def test_circular_dependency() -> None:
    steps = [
        {"id": "a", "title": "A", "dependencies": ["b"]},
        {"id": "b", "title": "B", "dependencies": ["a"]},
    ]
    result = TemplateValidator().validate(_template(steps=steps))
    assert result.errors == ["Circular dependency detected: a → b → a"]


def test_undefined_variable_warnings() -> None:
    steps = [
        {
            "id": "a",
            "title": "A",
            "condition": "${enabled}",
            "commands": [{"id": "c1", "type": "bash", "content": "echo ${missing}"}],
        }
    ]
    result = TemplateValidator().validate(_template(steps=steps))
    assert result.valid
    assert result.warnings == [
        'Step "a": condition references undefined variable "enabled"',
        'Step "a", command "c1": references undefined variable "missing"',
    ]


def test_unflagged_dangerous_command_warns() -> None:
    steps = [
        {
            "id": "clean",
            "title": "Clean",
            "commands": [
                {"id": "c1", "type": "bash", "content": "rm -rf build"},
                {"id": "c2", "type": "bash", "content": "rm -rf dist", "dangerous": True},
            ],
        }
    ]
    result = TemplateValidator().validate(_template(steps=steps))
    assert result.valid
    assert result.warnings == [
        'Step "clean", command "c1": looks dangerous but is not marked "dangerous: true"'
    ]


def test_validate_or_raise() -> None:
    with pytest.raises(TemplateValidationError) as excinfo:
        TemplateValidator().validate_or_raise(_template(version="x"), "deploy")
    assert excinfo.value.template_id == "deploy"
    assert excinfo.value.violations
    assert excinfo.value.details["warnings"] == []
