from __future__ import annotations

from collections.abc import Sequence
from typing import Any

_MIB = 1024 * 1024


class TemplateError(ValueError):
    """
    Base class for template failures.

    `code` is a stable machine-readable identifier, `details` carries structured
    context and `recovery` a short human hint. `recoverable` errors leave the
    caller free to retry (e.g. after fixing a file); the others are policy
    failures.
    """

    default_code = "TEMPLATE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        recoverable: bool = False,
        template_id: str | None = None,
        template_path: str | None = None,
        details: dict[str, Any] | None = None,
        recovery: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.recoverable = recoverable
        self.template_id = template_id
        self.template_path = template_path
        self.details = details or {}
        self.recovery = recovery

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
            "details": dict(self.details),
        }
        if self.template_id is not None:
            out["template_id"] = self.template_id
        if self.template_path is not None:
            out["template_path"] = self.template_path
        if self.recovery is not None:
            out["recovery"] = self.recovery
        return out


def _load_recovery(reason: str) -> str:
    lowered = reason.lower()
    if "not found" in lowered or "no such file" in lowered:
        return "Ensure the template file exists in the templates directory"
    if "permission" in lowered:
        return "Check file permissions for the template file"
    if "parse" in lowered or "yaml" in lowered:
        return "Verify the template file has valid YAML syntax"
    return "Review the template file and error details"


class TemplateLoadError(TemplateError):
    default_code = "TEMPLATE_LOAD_ERROR"

    def __init__(self, template_path: str, reason: str, *, cause: BaseException | None = None):
        details: dict[str, Any] = {"reason": reason}
        if cause is not None:
            details["original_error"] = str(cause)
        super().__init__(
            f'Failed to load template from "{template_path}": {reason}',
            recoverable=True,
            template_path=template_path,
            details=details,
            recovery=_load_recovery(reason),
        )
        self.reason = reason


class TemplateValidationError(TemplateError):
    default_code = "TEMPLATE_VALIDATION_ERROR"

    def __init__(
        self,
        template_id: str,
        violations: Sequence[str],
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        lines = "\n".join(f"  - {v}" for v in violations)
        super().__init__(
            f'Template validation failed for "{template_id}":\n{lines}',
            recoverable=True,
            template_id=template_id,
            details={"violations": list(violations), **(details or {})},
            recovery="Review and fix the validation errors in the template",
        )
        self.violations = list(violations)


class SandboxViolationError(TemplateError):
    default_code = "SANDBOX_VIOLATION_ERROR"

    def __init__(
        self, template_id: str, violation: str, *, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            f'Sandbox security violation in template "{template_id}": {violation}',
            template_id=template_id,
            details={"violation": violation, **(details or {})},
            recovery="Remove the dangerous operation from the template",
        )
        self.violation = violation


class NetworkAccessError(TemplateError):
    default_code = "NETWORK_ACCESS_ERROR"

    def __init__(
        self, template_id: str, resource: str, *, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            f'Network access blocked in template "{template_id}": {resource}',
            template_id=template_id,
            details={"resource": resource, **(details or {})},
            recovery="Templates should not access network resources",
        )
        self.resource = resource


class TemplateTimeoutError(TemplateError):
    default_code = "TIMEOUT_ERROR"

    def __init__(self, template_id: str, timeout_ms: float, operation: str | None = None):
        op_info = f" during {operation}" if operation else ""
        super().__init__(
            f'Template "{template_id}" execution timeout{op_info} (limit: {timeout_ms:g}ms)',
            template_id=template_id,
            details={"timeout_ms": timeout_ms, "operation": operation},
            recovery="Simplify the template logic or increase the timeout limit",
        )
        self.timeout_ms = timeout_ms


class MemoryLimitError(TemplateError):
    default_code = "MEMORY_LIMIT_ERROR"

    def __init__(self, template_id: str, memory_used: int, memory_limit: int) -> None:
        super().__init__(
            f'Template "{template_id}" exceeded memory limit: '
            f"{memory_used / _MIB:.2f}MB (limit: {memory_limit / _MIB:.2f}MB)",
            template_id=template_id,
            details={"memory_used": memory_used, "memory_limit": memory_limit},
            recovery="Reduce memory usage in the template or increase the limit",
        )


class ResourceLimitError(TemplateError):
    default_code = "RESOURCE_LIMIT_ERROR"

    def __init__(
        self, resource_type: str, used: float, limit: float, template_id: str | None = None
    ) -> None:
        where = f' in template "{template_id}"' if template_id is not None else ""
        super().__init__(
            f"Resource limit exceeded{where}: {resource_type} used {used:g}, limit {limit:g}",
            template_id=template_id,
            details={"resource_type": resource_type, "used": used, "limit": limit},
            recovery=f"Reduce {resource_type} usage or increase the limit",
        )
        self.resource_type = resource_type


class TemplateInheritanceError(TemplateError):
    default_code = "TEMPLATE_INHERITANCE_ERROR"

    def __init__(
        self,
        template_id: str,
        issue: str,
        *,
        chain: Sequence[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f'Template inheritance error in "{template_id}": {issue}'
        extra: dict[str, Any] = {"issue": issue, **(details or {})}
        if chain is not None:
            message += f"\nInheritance chain: {' → '.join(chain)}"
            extra["chain"] = list(chain)
        super().__init__(
            message,
            recoverable=True,
            template_id=template_id,
            details=extra,
            recovery=(
                "Check the template inheritance configuration and resolve circular dependencies"
            ),
        )
        self.chain = list(chain) if chain is not None else []


class TemplateCacheError(TemplateError):
    default_code = "TEMPLATE_CACHE_ERROR"

    def __init__(
        self, operation: str, reason: str, *, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            f"Template cache {operation} failed: {reason}",
            recoverable=True,
            details={"operation": operation, "reason": reason, **(details or {})},
            recovery="Clear the template cache and reload",
        )


class NestingDepthExceededError(TemplateError):
    default_code = "NESTING_DEPTH_EXCEEDED"

    def __init__(self, max_depth: int, actual_depth: int) -> None:
        super().__init__(
            f"Variable nesting depth exceeded: maximum {max_depth}, reached {actual_depth}",
            details={"max_depth": max_depth, "actual_depth": actual_depth},
            recovery="Reduce the nesting of variable references",
        )
        self.max_depth = max_depth
        self.actual_depth = actual_depth


def is_template_error(error: object) -> bool:
    return isinstance(error, TemplateError)


def get_recovery_suggestion(error: object) -> str | None:
    if isinstance(error, TemplateError):
        return error.recovery
    return None
