from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

VISIBILITY_VALUES: frozenset[str] = frozenset({"public", "private", "team"})
VARIABLE_TYPES: frozenset[str] = frozenset({"string", "number", "boolean", "array"})
STEP_TYPES: frozenset[str] = frozenset(
    {"task", "confirmation", "input", "automated", "multi-command"}
)
COMMAND_TYPES: frozenset[str] = frozenset({"bash", "npm", "git", "custom"})
EXECUTION_MODES: frozenset[str] = frozenset({"sequential", "parallel"})


@dataclass(frozen=True)
class TemplateMetadata:
    author: str = ""
    tags: tuple[str, ...] = ()
    visibility: str | None = None
    created: str | None = None
    updated: str | None = None
    parent: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"author": self.author, "tags": list(self.tags)}
        for key in ("visibility", "created", "updated", "parent"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class TemplateVariable:
    name: str
    type: str
    required: bool = False
    default: Any = None
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "type": self.type, "required": self.required}
        if self.default is not None:
            out["default"] = list(self.default) if isinstance(self.default, tuple) else self.default
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True)
class Command:
    id: str
    type: str
    content: str
    dangerous: bool = False
    requires_confirmation: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.type, "content": self.content}
        if self.dangerous:
            out["dangerous"] = True
        if self.requires_confirmation:
            out["requires_confirmation"] = True
        return out


@dataclass(frozen=True)
class Step:
    id: str
    title: str
    description: str = ""
    type: str = "task"
    commands: tuple[Command, ...] = ()
    dependencies: tuple[str, ...] = ()
    condition: str | None = None
    execution_mode: str = "sequential"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "title": self.title, "type": self.type}
        if self.description:
            out["description"] = self.description
        if self.commands:
            out["commands"] = [c.to_dict() for c in self.commands]
        if self.dependencies:
            out["dependencies"] = list(self.dependencies)
        if self.condition:
            out["condition"] = self.condition
        if self.execution_mode != "sequential":
            out["execution_mode"] = self.execution_mode
        return out


@dataclass(frozen=True)
class ChecklistTemplate:
    id: str
    name: str
    version: str
    description: str
    metadata: TemplateMetadata = field(default_factory=TemplateMetadata)
    variables: tuple[TemplateVariable, ...] = ()
    steps: tuple[Step, ...] = ()
    extends: str | None = None
    source_path: Path | None = field(default=None, compare=False)

    def step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def variable(self, name: str) -> TemplateVariable | None:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
        }
        if self.extends:
            out["extends"] = self.extends
        out["metadata"] = self.metadata.to_dict()
        out["variables"] = [v.to_dict() for v in self.variables]
        out["steps"] = [s.to_dict() for s in self.steps]
        return out


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str))


def _mappings(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _metadata_from_dict(raw: Any) -> TemplateMetadata:
    if not isinstance(raw, Mapping):
        return TemplateMetadata()
    return TemplateMetadata(
        author=_str(raw.get("author")),
        tags=_str_tuple(raw.get("tags")),
        visibility=_opt_str(raw.get("visibility")),
        created=_opt_str(raw.get("created")),
        updated=_opt_str(raw.get("updated")),
        parent=_opt_str(raw.get("parent")),
    )


def _variable_from_dict(raw: Mapping[str, Any]) -> TemplateVariable:
    default = raw.get("default")
    if isinstance(default, list):
        default = tuple(default)
    return TemplateVariable(
        name=_str(raw.get("name")),
        type=_str(raw.get("type"), "string"),
        required=raw.get("required") is True,
        default=default,
        description=_str(raw.get("description")),
    )


def _command_from_dict(raw: Mapping[str, Any]) -> Command:
    return Command(
        id=_str(raw.get("id")),
        type=_str(raw.get("type"), "bash"),
        content=_str(raw.get("content")),
        dangerous=raw.get("dangerous") is True,
        requires_confirmation=raw.get("requires_confirmation") is True,
    )


def _step_from_dict(raw: Mapping[str, Any]) -> Step:
    return Step(
        id=_str(raw.get("id")),
        title=_str(raw.get("title")),
        description=_str(raw.get("description")),
        type=_str(raw.get("type"), "task"),
        commands=tuple(_command_from_dict(c) for c in _mappings(raw.get("commands"))),
        dependencies=_str_tuple(raw.get("dependencies")),
        condition=_opt_str(raw.get("condition")),
        execution_mode=_str(raw.get("execution_mode"), "sequential"),
    )


def template_from_dict(
    data: Mapping[str, Any], *, source_path: Path | None = None
) -> ChecklistTemplate:
    """
    Build a template from parsed YAML.

    Missing or mistyped fields fall back to their defaults so that templates
    loaded with validation skipped still produce an object.
    """

    return ChecklistTemplate(
        id=_str(data.get("id")),
        name=_str(data.get("name")),
        version=_str(data.get("version")),
        description=_str(data.get("description")),
        metadata=_metadata_from_dict(data.get("metadata")),
        variables=tuple(_variable_from_dict(v) for v in _mappings(data.get("variables"))),
        steps=tuple(_step_from_dict(s) for s in _mappings(data.get("steps"))),
        extends=_opt_str(data.get("extends")),
        source_path=source_path,
    )
