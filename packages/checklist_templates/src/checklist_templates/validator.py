from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from checklist_templates.errors import TemplateValidationError
from checklist_templates.schema import validate_against_schema
from checklist_templates.security import DangerousCommandDetector

_VAR_REF_RE = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _json_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


class TemplateValidator:
    """
    Schema plus content checks for a parsed template mapping.

    Schema failures short-circuit: content rules assume a well-formed document.
    """

    def __init__(self, *, detector: DangerousCommandDetector | None = None) -> None:
        self._detector = detector or DangerousCommandDetector()

    def validate(self, data: Any) -> ValidationResult:
        errors = validate_against_schema(data)
        if errors:
            return ValidationResult(valid=False, errors=errors)

        warnings: list[str] = []
        variables = data.get("variables") or []
        steps = data.get("steps") or []

        _check_variable_defaults(variables, errors)
        _check_step_dependencies(steps, errors)
        _check_dependency_cycles(steps, errors)

        declared = {v["name"] for v in variables}
        _check_condition_references(steps, declared, warnings)
        _check_command_references(steps, declared, warnings)
        self._check_unflagged_dangerous_commands(steps, warnings)

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def validate_or_raise(self, data: Any, template_id: str) -> ValidationResult:
        result = self.validate(data)
        if not result.valid:
            raise TemplateValidationError(
                template_id, result.errors, details={"warnings": list(result.warnings)}
            )
        return result

    def _check_unflagged_dangerous_commands(
        self, steps: list[Mapping[str, Any]], warnings: list[str]
    ) -> None:
        for step in steps:
            for command in step.get("commands") or []:
                if command.get("dangerous") is True:
                    continue
                if self._detector.is_dangerous(command["content"]):
                    warnings.append(
                        f'Step "{step["id"]}", command "{command["id"]}": '
                        'looks dangerous but is not marked "dangerous: true"'
                    )


def _check_variable_defaults(variables: list[Mapping[str, Any]], errors: list[str]) -> None:
    for variable in variables:
        if "default" not in variable or variable["default"] is None:
            continue
        default = variable["default"]
        declared = variable["type"]
        actual = _json_type(default)
        if declared == "array" and actual != "array":
            errors.append(f'Variable "{variable["name"]}": default value must be an array')
        elif declared != "array" and actual != declared:
            errors.append(
                f'Variable "{variable["name"]}": default value type "{actual}" '
                f'does not match declared type "{declared}"'
            )


def _check_step_dependencies(steps: list[Mapping[str, Any]], errors: list[str]) -> None:
    step_ids = {step["id"] for step in steps}
    for step in steps:
        for dep in step.get("dependencies") or []:
            if dep not in step_ids:
                errors.append(f'Step "{step["id"]}": dependency "{dep}" does not exist')


def _check_dependency_cycles(steps: list[Mapping[str, Any]], errors: list[str]) -> None:
    graph = {step["id"]: list(step.get("dependencies") or []) for step in steps}
    visited: set[str] = set()
    on_stack: set[str] = set()

    def _visit(step_id: str, path: list[str]) -> None:
        if step_id in on_stack:
            errors.append(f"Circular dependency detected: {' → '.join([*path, step_id])}")
            return
        if step_id in visited:
            return
        visited.add(step_id)
        on_stack.add(step_id)
        for dep in graph.get(step_id, []):
            _visit(dep, [*path, step_id])
        on_stack.discard(step_id)

    for step_id in graph:
        if step_id not in visited:
            _visit(step_id, [])


def _check_condition_references(
    steps: list[Mapping[str, Any]], declared: set[str], warnings: list[str]
) -> None:
    for step in steps:
        condition = step.get("condition")
        if not condition:
            continue
        for match in _VAR_REF_RE.finditer(condition):
            if match.group(1) not in declared:
                warnings.append(
                    f'Step "{step["id"]}": condition references undefined variable '
                    f'"{match.group(1)}"'
                )


def _check_command_references(
    steps: list[Mapping[str, Any]], declared: set[str], warnings: list[str]
) -> None:
    for step in steps:
        for command in step.get("commands") or []:
            for match in _VAR_REF_RE.finditer(command["content"]):
                if match.group(1) not in declared:
                    warnings.append(
                        f'Step "{step["id"]}", command "{command["id"]}": references '
                        f'undefined variable "{match.group(1)}"'
                    )
