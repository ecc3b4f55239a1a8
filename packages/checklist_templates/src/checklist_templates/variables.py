from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class VariableStoreError(RuntimeError):
    pass


class VariableStore:
    """
    Variable values in two scopes: global, and per step.

    A value set for a step shadows the global value of the same name for that
    step only.
    """

    def __init__(self, state_file: Path | str | None = None) -> None:
        self.state_file = Path(state_file) if state_file is not None else None
        self._global: dict[str, Any] = {}
        self._steps: dict[str, dict[str, Any]] = {}

    def get(self, name: str, step_id: str | None = None) -> Any:
        if step_id is not None:
            scope = self._steps.get(step_id)
            if scope is not None and name in scope:
                return scope[name]
        return self._global.get(name)

    def set(self, name: str, value: Any, step_id: str | None = None) -> None:
        if step_id is None:
            self._global[name] = value
        else:
            self._steps.setdefault(step_id, {})[name] = value

    def has(self, name: str, step_id: str | None = None) -> bool:
        if step_id is not None and name in self._steps.get(step_id, {}):
            return True
        return name in self._global

    def delete(self, name: str, step_id: str | None = None) -> bool:
        if step_id is None:
            return self._global.pop(name, _MISSING) is not _MISSING
        scope = self._steps.get(step_id)
        if scope is None or name not in scope:
            return False
        del scope[name]
        if not scope:
            del self._steps[step_id]
        return True

    def get_all(self, step_id: str | None = None) -> dict[str, Any]:
        merged = dict(self._global)
        if step_id is not None:
            merged.update(self._steps.get(step_id, {}))
        return merged

    def update(self, values: dict[str, Any], step_id: str | None = None) -> None:
        for name, value in values.items():
            self.set(name, value, step_id)

    def clear(self, step_id: str | None = None) -> None:
        if step_id is None:
            self._global.clear()
            self._steps.clear()
        else:
            self._steps.pop(step_id, None)

    def step_ids(self) -> list[str]:
        return sorted(self._steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "global": dict(self._global),
            "steps": {step_id: dict(scope) for step_id, scope in self._steps.items()},
        }

    def _require_state_file(self) -> Path:
        if self.state_file is None:
            raise VariableStoreError("No state file configured for this variable store.")
        return self.state_file

    def persist(self) -> Path:
        path = self._require_state_file()
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.tmp")
        tmp.write_text(
            yaml.safe_dump(self.to_dict(), sort_keys=True, allow_unicode=True),
            encoding="utf-8",
        )
        os.replace(tmp, path)
        logger.debug("Persisted %d global variables to %s", len(self._global), path)
        return path

    def load(self) -> bool:
        """Replace the in-memory state with the state file; False when it does not exist."""

        path = self._require_state_file()
        if not path.exists():
            return False
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise VariableStoreError(f"Failed to read variable state {path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise VariableStoreError(f"Variable state {path} must be a mapping.")
        version = raw.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise VariableStoreError(
                f"Unsupported variable state version {version!r} in {path}."
            )

        global_scope = raw.get("global") or {}
        steps = raw.get("steps") or {}
        if not isinstance(global_scope, dict) or not isinstance(steps, dict):
            raise VariableStoreError(f"Variable state {path} has malformed scopes.")
        if not all(isinstance(scope, dict) for scope in steps.values()):
            raise VariableStoreError(f"Variable state {path} has malformed step scopes.")

        self._global = {str(k): v for k, v in global_scope.items()}
        self._steps = {
            str(step_id): {str(k): v for k, v in scope.items()}
            for step_id, scope in steps.items()
        }
        return True


_MISSING = object()
