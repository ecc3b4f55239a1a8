from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any

from jsonschema import Draft202012Validator

_SCHEMA_FILE = "checklist_template_v1.schema.json"


@lru_cache(maxsize=1)
def load_template_schema() -> dict[str, Any]:
    schema_file = resources.files("checklist_templates") / "schemas" / _SCHEMA_FILE
    text = schema_file.read_text(encoding="utf-8")
    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError(f"Schema must be a JSON object: {_SCHEMA_FILE}")
    return raw


def _format_path(parts: Any) -> str:
    path = "$"
    for part in parts:
        path += f"[{part!r}]" if isinstance(part, int) else f".{part}"
    return path


def validate_against_schema(data: Any, schema: dict[str, Any] | None = None) -> list[str]:
    validator = Draft202012Validator(schema or load_template_schema())
    errors = sorted(validator.iter_errors(data), key=lambda e: str(e.path))
    return [f"{_format_path(error.path)}: {error.message}" for error in errors]
