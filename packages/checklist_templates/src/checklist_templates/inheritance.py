from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from checklist_templates.errors import TemplateError, TemplateInheritanceError
from checklist_templates.models import ChecklistTemplate, TemplateMetadata

logger = logging.getLogger(__name__)

LoadFn = Callable[[Path], ChecklistTemplate]

_T = TypeVar("_T")


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _merge_by_key(
    base: Iterable[_T], derived: Iterable[_T], key: Callable[[_T], str]
) -> tuple[_T, ...]:
    merged: dict[str, _T] = {key(item): item for item in base}
    for item in derived:
        merged[key(item)] = item
    return tuple(merged.values())


def merge_metadata(base: TemplateMetadata, derived: TemplateMetadata) -> TemplateMetadata:
    return TemplateMetadata(
        author=derived.author or base.author,
        tags=tuple(sorted(set(base.tags) | set(derived.tags))),
        visibility=derived.visibility or base.visibility or "private",
        created=base.created or _now_iso(),
        updated=_now_iso(),
        parent=derived.parent or base.parent,
    )


def merge_templates(base: ChecklistTemplate, derived: ChecklistTemplate) -> ChecklistTemplate:
    """
    Overlay `derived` on `base`.

    Identity fields come from the derived template. Variables (by name) and
    steps (by id) keep the base ordering; derived entries replace base entries
    with the same key and new ones are appended.
    """

    return replace(
        derived,
        metadata=merge_metadata(base.metadata, derived.metadata),
        variables=_merge_by_key(base.variables, derived.variables, lambda v: v.name),
        steps=_merge_by_key(base.steps, derived.steps, lambda s: s.id),
    )


class TemplateInheritance:
    def __init__(self, load_fn: LoadFn, *, max_depth: int = 10) -> None:
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}.")
        self._load = load_fn
        self.max_depth = max_depth

    def validate_depth(self, template_id: str, depth: int, chain: list[str]) -> None:
        if depth >= self.max_depth:
            raise TemplateInheritanceError(
                template_id,
                f"Max inheritance depth exceeded ({self.max_depth})",
                chain=chain,
                details={"depth": depth, "max_depth": self.max_depth},
            )

    def build_chain(
        self, template: ChecklistTemplate, path: Path | str
    ) -> list[ChecklistTemplate]:
        """Return the inheritance chain ordered base first, `template` last."""

        chain = [template]
        current = template
        current_path = Path(path)
        visited = {_resolved(current_path)}

        while current.extends:
            ids = [t.id for t in chain]
            self.validate_depth(template.id, len(chain), ids)

            parent_path = current_path.parent / current.extends
            key = _resolved(parent_path)
            if key in visited:
                raise TemplateInheritanceError(
                    template.id,
                    "Circular inheritance detected",
                    chain=[*ids, current.extends],
                )
            visited.add(key)

            try:
                parent = self._load(parent_path)
            except TemplateError as e:
                raise TemplateInheritanceError(
                    template.id,
                    f"Failed to load parent template: {current.extends}",
                    chain=ids,
                    details={"parent_path": str(parent_path), "cause": str(e)},
                ) from e

            chain.append(parent)
            current = parent
            current_path = parent_path

        chain.reverse()
        return chain

    def resolve(self, template: ChecklistTemplate, path: Path | str) -> ChecklistTemplate:
        if not template.extends:
            return template

        chain = self.build_chain(template, path)
        merged = chain[0]
        for derived in chain[1:]:
            merged = merge_templates(merged, derived)

        logger.debug(
            "Resolved inheritance for %s: %s",
            template.id,
            " → ".join(t.id for t in chain),
        )
        return replace(merged, source_path=template.source_path)


def _resolved(path: Path) -> str:
    try:
        return str(path.resolve(strict=False))
    except OSError:
        return str(path)
