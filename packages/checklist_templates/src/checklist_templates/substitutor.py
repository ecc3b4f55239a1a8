from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

from checklist_templates.errors import NestingDepthExceededError
from checklist_templates.variables import VariableStore

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\$\{([a-zA-Z0-9_.-]+)(?::-(.*?))?\}")
ESCAPED_PATTERN = re.compile(r"\\(\$\{[^}]+\})")
NESTED_PATTERN = re.compile(r"\$\{([^}]*\$\{[^}]+\}[^}]*)\}")

_MAX_SUGGESTION_DISTANCE = 3
_MAX_SUGGESTIONS = 3


@dataclass(frozen=True)
class SubstitutionConfig:
    max_nesting_depth: int = 5
    allow_undefined_variables: bool = False
    use_default_values: bool = True

    def __post_init__(self) -> None:
        if self.max_nesting_depth < 0:
            raise ValueError(
                f"max_nesting_depth must be non-negative, got {self.max_nesting_depth}."
            )


@dataclass(frozen=True)
class SubstitutionIssue:
    variable: str
    message: str
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubstitutionMetadata:
    duration_ms: float
    variable_count: int
    nesting_depth: int


@dataclass(frozen=True)
class SubstitutionResult:
    output: str
    variables_used: tuple[str, ...]
    errors: tuple[SubstitutionIssue, ...]
    metadata: SubstitutionMetadata

    @property
    def ok(self) -> bool:
        return not self.errors


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def suggest_names(name: str, candidates: list[str]) -> tuple[str, ...]:
    scored = sorted(
        (levenshtein(name, candidate), candidate)
        for candidate in candidates
        if candidate != name
    )
    return tuple(
        candidate for distance, candidate in scored if distance <= _MAX_SUGGESTION_DISTANCE
    )[:_MAX_SUGGESTIONS]


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(item) for item in value)
    return str(value)


def extract_variables(text: str) -> list[str]:
    """Names referenced by `text`, in order of first appearance, escapes excluded."""

    unescaped = ESCAPED_PATTERN.sub("", text)
    return list(dict.fromkeys(m.group(1) for m in VARIABLE_PATTERN.finditer(unescaped)))


class VariableSubstitutor:
    def __init__(
        self, store: VariableStore, config: SubstitutionConfig | None = None
    ) -> None:
        self.store = store
        self.config = config or SubstitutionConfig()

    def substitute(self, text: str, step_id: str | None = None) -> SubstitutionResult:
        started = time.perf_counter()
        try:
            result = self._substitute(text, step_id, started)
        except NestingDepthExceededError as e:
            logger.error("Variable substitution failed: %s", e)
            raise
        logger.debug(
            "Variable substitution complete (variables=%d errors=%d duration_ms=%.3f)",
            result.metadata.variable_count,
            len(result.errors),
            result.metadata.duration_ms,
        )
        return result

    def _substitute(self, text: str, step_id: str | None, started: float) -> SubstitutionResult:
        used: list[str] = []
        issues: dict[str, SubstitutionIssue] = {}

        escaped: list[str] = []

        def _stash(match: re.Match[str]) -> str:
            escaped.append(match.group(1))
            return f"__ESCAPED_{len(escaped) - 1}__"

        output = ESCAPED_PATTERN.sub(_stash, text)

        depth = 0
        while NESTED_PATTERN.search(output) and depth < self.config.max_nesting_depth:
            output = self._resolve(output, step_id, used, issues)
            depth += 1
        if NESTED_PATTERN.search(output):
            raise NestingDepthExceededError(self.config.max_nesting_depth, depth)
        output = self._resolve(output, step_id, used, issues)

        for index, literal in enumerate(escaped):
            output = output.replace(f"__ESCAPED_{index}__", literal)

        unique = tuple(dict.fromkeys(used))
        return SubstitutionResult(
            output=output,
            variables_used=unique,
            errors=tuple(issues.values()),
            metadata=SubstitutionMetadata(
                duration_ms=(time.perf_counter() - started) * 1000.0,
                variable_count=len(unique),
                nesting_depth=depth,
            ),
        )

    def _resolve(
        self,
        text: str,
        step_id: str | None,
        used: list[str],
        issues: dict[str, SubstitutionIssue],
    ) -> str:
        def _replace(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            used.append(name)

            if self.store.has(name, step_id):
                return format_value(self.store.get(name, step_id))
            if default is not None and self.config.use_default_values:
                return default
            if self.config.allow_undefined_variables:
                return ""

            if name not in issues:
                suggestions = suggest_names(name, list(self.store.get_all(step_id)))
                message = f"Variable '{name}' is not defined"
                if suggestions:
                    message += f". Did you mean: {', '.join(suggestions)}?"
                issues[name] = SubstitutionIssue(
                    variable=name, message=message, suggestions=suggestions
                )
            return match.group(0)

        return VARIABLE_PATTERN.sub(_replace, text)


@dataclass(frozen=True)
class PreviewVariable:
    name: str
    value: Any
    start: int
    end: int
    defined: bool = True
    highlighted: bool = True


@dataclass(frozen=True)
class Preview:
    original: str
    substituted: str
    variables: tuple[PreviewVariable, ...] = ()
    errors: tuple[SubstitutionIssue, ...] = field(default_factory=tuple)


class SubstitutionPreview:
    def __init__(self, substitutor: VariableSubstitutor, store: VariableStore) -> None:
        self.substitutor = substitutor
        self.store = store

    def generate(self, text: str, step_id: str | None = None) -> Preview:
        result = self.substitutor.substitute(text, step_id)
        variables: list[PreviewVariable] = []
        for match in VARIABLE_PATTERN.finditer(text):
            if match.start() > 0 and text[match.start() - 1] == "\\":
                continue
            name, default = match.group(1), match.group(2)
            defined = self.store.has(name, step_id)
            value = self.store.get(name, step_id) if defined else default
            variables.append(
                PreviewVariable(
                    name=name,
                    value=value,
                    start=match.start(),
                    end=match.end(),
                    defined=defined,
                )
            )
        return Preview(
            original=text,
            substituted=result.output,
            variables=tuple(variables),
            errors=result.errors,
        )

    @staticmethod
    def format_value(value: Any) -> str:
        if isinstance(value, tuple):
            value = list(value)
        return json.dumps(value, ensure_ascii=False, default=str)

    def format_for_terminal(self, preview: Preview) -> str:
        lines = ["Original:", f"  {preview.original}", "", "Substituted:"]
        lines.append(f"  {preview.substituted}")
        lines.extend(["", "Variables:"])
        if not preview.variables:
            lines.append("  (none)")
        for variable in preview.variables:
            if variable.defined or variable.value is not None:
                lines.append(f"  {variable.name} = {self.format_value(variable.value)}")
            else:
                lines.append(f"  {variable.name} = <undefined>")
        if preview.errors:
            lines.extend(["", "Errors:"])
            lines.extend(f"  - {issue.message}" for issue in preview.errors)
        return "\n".join(lines)
