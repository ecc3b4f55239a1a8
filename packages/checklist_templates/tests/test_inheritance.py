from __future__ import annotations

from pathlib import Path

import pytest

from checklist_templates import (
    ChecklistTemplate,
    Step,
    TemplateInheritance,
    TemplateInheritanceError,
    TemplateLoadError,
    TemplateMetadata,
    TemplateVariable,
    merge_templates,
)


def _tpl(
    template_id: str,
    *,
    extends: str | None = None,
    steps: tuple[str, ...] = ("s",),
    variables: tuple[TemplateVariable, ...] = (),
    metadata: TemplateMetadata | None = None,
) -> ChecklistTemplate:
    return ChecklistTemplate(
        id=template_id,
        name=template_id.upper(),
        version="1.0.0",
        description=f"{template_id} description",
        metadata=metadata or TemplateMetadata(),
        variables=variables,
        steps=tuple(Step(id=s, title=f"{template_id}:{s}") for s in steps),
        extends=extends,
    )


class _Registry:
    def __init__(self, root: Path, templates: dict[str, ChecklistTemplate]) -> None:
        self.root = root
        self.templates = templates
        self.loaded: list[str] = []

    def __call__(self, path: Path) -> ChecklistTemplate:
        name = path.resolve().relative_to(self.root.resolve()).as_posix()
        self.loaded.append(name)
        if name not in self.templates:
            raise TemplateLoadError(str(path), "Template file not found")
        return self.templates[name]


def test_template_without_extends_is_returned_unchanged(tmp_path: Path) -> None:
    template = _tpl("solo")
    registry = _Registry(tmp_path, {})
    assert TemplateInheritance(registry).resolve(template, tmp_path / "solo.yaml") is template
    assert registry.loaded == []


def test_merge_overrides_by_key_and_keeps_base_order() -> None:
    base = _tpl(
        "base",
        steps=("a", "b"),
        variables=(TemplateVariable("env", "string", default="dev"),),
    )
    derived = _tpl(
        "child",
        extends="base.yaml",
        steps=("b", "c"),
        variables=(
            TemplateVariable("env", "string", default="prod"),
            TemplateVariable("region", "string"),
        ),
    )
    merged = merge_templates(base, derived)
    assert merged.id == "child"
    assert merged.name == "CHILD"
    assert merged.extends == "base.yaml"
    assert [(s.id, s.title) for s in merged.steps] == [
        ("a", "base:a"),
        ("b", "child:b"),
        ("c", "child:c"),
    ]
    assert [(v.name, v.default) for v in merged.variables] == [("env", "prod"), ("region", None)]


def test_merge_metadata() -> None:
    base = _tpl(
        "base",
        metadata=TemplateMetadata(
            author="ops", tags=("deploy", "ci"), visibility="team", created="2024-01-01"
        ),
    )
    derived = _tpl("child", metadata=TemplateMetadata(tags=("ci", "aws")))
    meta = merge_templates(base, derived).metadata
    assert meta.author == "ops"
    assert meta.tags == ("aws", "ci", "deploy")
    assert meta.visibility == "team"
    assert meta.created == "2024-01-01"
    assert meta.updated is not None


def test_visibility_defaults_to_private() -> None:
    meta = merge_templates(_tpl("base"), _tpl("child")).metadata
    assert meta.visibility == "private"


def test_resolve_multi_level_chain(tmp_path: Path) -> None:
    registry = _Registry(
        tmp_path,
        {
            "shared/root.yaml": _tpl("root", steps=("r",)),
            "shared/mid.yaml": _tpl("mid", extends="root.yaml", steps=("m",)),
        },
    )
    leaf = _tpl("leaf", extends="shared/mid.yaml", steps=("l",))
    inheritance = TemplateInheritance(registry)

    chain = inheritance.build_chain(leaf, tmp_path / "leaf.yaml")
    assert [t.id for t in chain] == ["root", "mid", "leaf"]

    resolved = inheritance.resolve(leaf, tmp_path / "leaf.yaml")
    assert [s.id for s in resolved.steps] == ["r", "m", "l"]
    assert registry.loaded == ["shared/mid.yaml", "shared/root.yaml"] * 2


def test_circular_inheritance(tmp_path: Path) -> None:
    registry = _Registry(tmp_path, {"b.yaml": _tpl("b", extends="a.yaml")})
    a = _tpl("a", extends="b.yaml")
    with pytest.raises(TemplateInheritanceError, match="Circular inheritance detected") as exc:
        TemplateInheritance(registry).resolve(a, tmp_path / "a.yaml")
    assert exc.value.chain == ["a", "b", "a.yaml"]


def test_max_depth(tmp_path: Path) -> None:
    templates = {f"t{i}.yaml": _tpl(f"t{i}", extends=f"t{i + 1}.yaml") for i in range(1, 6)}
    registry = _Registry(tmp_path, templates)
    start = _tpl("t0", extends="t1.yaml")
    with pytest.raises(TemplateInheritanceError, match="Max inheritance depth exceeded"):
        TemplateInheritance(registry, max_depth=3).resolve(start, tmp_path / "t0.yaml")


def test_parent_load_failure(tmp_path: Path) -> None:
    registry = _Registry(tmp_path, {})
    child = _tpl("child", extends="missing.yaml")
    with pytest.raises(TemplateInheritanceError) as exc:
        TemplateInheritance(registry).resolve(child, tmp_path / "child.yaml")
    assert "Failed to load parent template: missing.yaml" in str(exc.value)
    assert isinstance(exc.value.__cause__, TemplateLoadError)
