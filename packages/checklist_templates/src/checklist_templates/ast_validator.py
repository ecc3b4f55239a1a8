from __future__ import annotations

import ast
import re

from checklist_templates.errors import SandboxViolationError

BLOCKED_IDENTIFIERS: frozenset[str] = frozenset(
    {
        "__import__",
        "eval",
        "exec",
        "compile",
        "open",
        "globals",
        "locals",
        "vars",
        "getattr",
        "setattr",
        "delattr",
        "breakpoint",
        "input",
        "os",
        "sys",
        "subprocess",
        "builtins",
        "__builtins__",
    }
)

DANGEROUS_CALLS: frozenset[str] = frozenset({"__import__", "eval", "exec", "compile", "open"})

_SIMPLE_VARIABLE = re.compile(r"\$\{[a-zA-Z_][a-zA-Z0-9_]*\}")


def _is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


class ASTValidator:
    """
    Reject expressions that parse as Python and reach for dangerous names.

    Text that is not valid Python (the usual case for `${...}` templates) is a
    plain string template and passes.
    """

    def validate_expression(self, expression: str, template_id: str) -> None:
        if _SIMPLE_VARIABLE.fullmatch(expression.strip()):
            return

        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError:
            return
        except (ValueError, MemoryError, RecursionError) as e:
            raise SandboxViolationError(
                template_id,
                f"Expression parsing failed: {type(e).__name__}: {e}",
                details={"expression": expression},
            ) from e

        for node in ast.walk(tree):
            message = _violation(node)
            if message is not None:
                raise SandboxViolationError(
                    template_id,
                    f"AST validation: {message}",
                    details={"expression": expression, "node_type": type(node).__name__},
                )


def _violation(node: ast.AST) -> str | None:
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
        if node.func.id in DANGEROUS_CALLS:
            return f"Dangerous function call: {node.func.id}"
    if isinstance(node, ast.Name) and node.id in BLOCKED_IDENTIFIERS:
        return f"Access to blocked identifier: {node.id}"
    if isinstance(node, ast.Attribute) and _is_dunder(node.attr):
        return f"Dunder attribute access detected: {node.attr}"
    if isinstance(node, ast.Lambda):
        return "Lambda expressions are not allowed"
    return None
