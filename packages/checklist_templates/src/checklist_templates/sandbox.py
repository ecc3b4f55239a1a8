from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from checklist_templates.ast_validator import BLOCKED_IDENTIFIERS, ASTValidator
from checklist_templates.errors import (
    NetworkAccessError,
    SandboxViolationError,
    TemplateError,
    TemplateTimeoutError,
)
from checklist_templates.resource_limiter import ResourceLimiter
from checklist_templates.substitutor import format_value

logger = logging.getLogger(__name__)

NETWORK_CAPABILITIES: frozenset[str] = frozenset(
    {"socket", "urllib", "requests", "http", "httpx", "fetch"}
)

BLOCKED_GLOBALS: frozenset[str] = BLOCKED_IDENTIFIERS | NETWORK_CAPABILITIES

DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"\beval\s*\(",
        r"\bexec\s*\(",
        r"__import__\s*\(",
        r"\bcompile\s*\(",
        r"\.__class__\b",
        r"__subclasses__",
        r"__globals__",
        r"__mro__",
        r"__bases__",
    )
)

_BLOCKED_GLOBAL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (name, re.compile(rf"\b{re.escape(name)}\b")) for name in sorted(BLOCKED_GLOBALS)
)
_IDENTIFIER_REF = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
_LONE_IDENTIFIER_REF = re.compile(r"^\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}$")
_SHELL_METACHARACTERS = re.compile(r"[;|&$(){}\[\]<>`\\]")


class SandboxContext(Mapping[str, Any]):
    """Read-only view of expression variables; network capability names are fenced off."""

    def __init__(self, variables: Mapping[str, Any], template_id: str) -> None:
        self._variables = MappingProxyType(dict(variables))
        self._template_id = template_id

    def __getitem__(self, key: str) -> Any:
        if key in NETWORK_CAPABILITIES:
            raise NetworkAccessError(
                self._template_id, f"Network access via '{key}' is blocked in templates"
            )
        return self._variables[key]

    def __contains__(self, key: object) -> bool:
        return key in NETWORK_CAPABILITIES or key in self._variables

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)


def sanitize_value(value: str) -> str:
    return _SHELL_METACHARACTERS.sub("", value)


class TemplateSandbox:
    def __init__(
        self,
        resource_limiter: ResourceLimiter | None = None,
        *,
        ast_validator: ASTValidator | None = None,
    ) -> None:
        self.resource_limiter = resource_limiter or ResourceLimiter()
        self._ast_validator = ast_validator or ASTValidator()

    def validate_expression(self, expression: str, template_id: str) -> None:
        """
        Three passes, cheapest first: known dangerous patterns, blocked global
        names on word boundaries, then an AST walk for what the regexes miss.
        """

        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(expression):
                self._reject(
                    template_id, f"Dangerous pattern detected: {pattern.pattern}", expression
                )

        for name, pattern in _BLOCKED_GLOBAL_PATTERNS:
            if pattern.search(expression):
                self._reject(template_id, f"Access to blocked global: {name}", expression)

        self._ast_validator.validate_expression(expression, template_id)

    @staticmethod
    def _reject(template_id: str, violation: str, expression: str) -> None:
        logger.warning("Sandbox violation in %s: %s", template_id, violation)
        raise SandboxViolationError(template_id, violation, details={"expression": expression})

    def create_context(self, variables: Mapping[str, Any], template_id: str) -> SandboxContext:
        return SandboxContext(variables, template_id)

    def execute_expression(
        self,
        expression: str,
        context: Mapping[str, Any],
        template_id: str,
        timeout: float = 5.0,
    ) -> str:
        self.validate_expression(expression, template_id)
        sandbox_context = self.create_context(context, template_id)

        def _run(cancel: threading.Event) -> str:
            return self._evaluate(expression, sandbox_context, template_id, cancel, timeout)

        return self.resource_limiter.execute_with_limits(
            _run, template_id, {"execution_time": timeout}
        )

    def _evaluate(
        self,
        expression: str,
        context: SandboxContext,
        template_id: str,
        cancel: threading.Event,
        timeout: float,
    ) -> str:
        if cancel.is_set():
            raise TemplateTimeoutError(template_id, timeout * 1000.0, "sandbox execution")

        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in context:
                return match.group(0)
            return format_value(context[name])

        try:
            return _IDENTIFIER_REF.sub(_replace, expression)
        except TemplateError:
            raise
        except Exception as e:
            raise SandboxViolationError(
                template_id,
                "Expression execution failed",
                details={"expression": expression, "error": str(e)},
            ) from e

    def evaluate_condition(
        self, condition: str, context: Mapping[str, Any], template_id: str
    ) -> bool:
        self.validate_expression(condition, template_id)
        match = _LONE_IDENTIFIER_REF.match(condition.strip())
        if match is None:
            return False
        return bool(context.get(match.group(1)))

    def substitute_variables(
        self, text: str, variables: Mapping[str, Any], template_id: str
    ) -> str:
        self.validate_expression(text, template_id)

        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in variables:
                return match.group(0)
            return sanitize_value(format_value(variables[name]))

        return _IDENTIFIER_REF.sub(_replace, text)
