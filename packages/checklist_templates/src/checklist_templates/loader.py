from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from packaging.version import InvalidVersion, Version

from checklist_templates.cache import TemplateCache
from checklist_templates.errors import TemplateLoadError
from checklist_templates.inheritance import TemplateInheritance
from checklist_templates.models import ChecklistTemplate, template_from_dict
from checklist_templates.validator import TemplateValidator, ValidationResult
from perf_monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

_TEMPLATE_SUFFIXES: tuple[str, ...] = (".yaml", ".yml")
_LOWEST_VERSION = Version("0")


@dataclass(frozen=True)
class TemplateInfo:
    path: Path
    id: str
    name: str
    version: str
    description: str
    size: int
    modified: float


def _cache_key(path: Path) -> str:
    try:
        return str(path.resolve(strict=False))
    except OSError:
        return str(path)


def _version_key(raw: str) -> Version:
    try:
        return Version(raw)
    except InvalidVersion:
        return _LOWEST_VERSION


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise TemplateLoadError(str(path), "Template file not found")
    try:
        text = path.read_text(encoding="utf-8")
    except PermissionError as e:
        raise TemplateLoadError(str(path), f"Permission denied: {e}", cause=e) from e
    except (OSError, UnicodeDecodeError) as e:
        raise TemplateLoadError(str(path), f"Failed to read template: {e}", cause=e) from e

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise TemplateLoadError(str(path), f"YAML parsing failed: {e}", cause=e) from e

    if not isinstance(raw, dict):
        got = "empty document" if raw is None else type(raw).__name__
        raise TemplateLoadError(str(path), f"Expected a YAML mapping, got {got}")
    return raw


class TemplateLoader:
    def __init__(
        self,
        templates_dir: Path | str = "templates",
        *,
        cache: TemplateCache | None = None,
        validator: TemplateValidator | None = None,
        monitor: PerformanceMonitor | None = None,
        max_inheritance_depth: int = 10,
    ) -> None:
        self.templates_dir = Path(templates_dir)
        self.cache = cache if cache is not None else TemplateCache()
        self.validator = validator or TemplateValidator()
        self.monitor = monitor
        self._inheritance = TemplateInheritance(self.load, max_depth=max_inheritance_depth)
        self._last_validation: dict[str, ValidationResult] = {}

    def _measure(self, operation: str) -> AbstractContextManager[None]:
        if self.monitor is None:
            return nullcontext()
        return self.monitor.measure(operation)

    def resolve_path(self, path: Path | str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute() or candidate.exists():
            return candidate
        return self.templates_dir / candidate

    def load(
        self,
        path: Path | str,
        *,
        skip_cache: bool = False,
        skip_validation: bool = False,
    ) -> ChecklistTemplate:
        template_path = self.resolve_path(path)
        key = _cache_key(template_path)

        if not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                if cached.mtime_ns == _mtime_ns(template_path):
                    return cached.content
                logger.debug("Template changed on disk, reloading: %s", key)
                self.cache.delete(key)

        with self._measure("template-parsing"):
            data = _read_yaml_mapping(template_path)

        if not skip_validation:
            template_id = data.get("id") if isinstance(data.get("id"), str) else str(template_path)
            with self._measure("template-validation"):
                result = self.validator.validate_or_raise(data, template_id)
            self._last_validation[key] = result
            for warning in result.warnings:
                logger.warning("Template %s: %s", template_id, warning)

        template = template_from_dict(data, source_path=template_path)
        if not skip_cache:
            self.cache.set(key, template, mtime_ns=_mtime_ns(template_path))
        logger.debug("Loaded template %s from %s", template.id, template_path)
        return template

    def load_resolved(self, path: Path | str, **kwargs: Any) -> ChecklistTemplate:
        template_path = self.resolve_path(path)
        template = self.load(template_path, **kwargs)
        return self._inheritance.resolve(template, template_path)

    def warnings_for(self, path: Path | str) -> list[str]:
        result = self._last_validation.get(_cache_key(self.resolve_path(path)))
        return list(result.warnings) if result is not None else []

    def extract_metadata(self, path: Path | str) -> TemplateInfo:
        template_path = self.resolve_path(path)
        data = _read_yaml_mapping(template_path)
        try:
            stat = template_path.stat()
        except OSError as e:
            raise TemplateLoadError(str(template_path), f"Failed to read file stats: {e}") from e

        def _field(name: str) -> str:
            value = data.get(name)
            return value if isinstance(value, str) else ""

        return TemplateInfo(
            path=template_path,
            id=_field("id"),
            name=_field("name"),
            version=_field("version"),
            description=_field("description"),
            size=stat.st_size,
            modified=stat.st_mtime,
        )

    def discover(self) -> list[TemplateInfo]:
        if not self.templates_dir.is_dir():
            raise TemplateLoadError(str(self.templates_dir), "Templates directory not found")

        files = sorted(
            p
            for p in self.templates_dir.rglob("*")
            if p.is_file() and p.suffix.lower() in _TEMPLATE_SUFFIXES
        )
        found: list[TemplateInfo] = []
        for path in files:
            try:
                found.append(self.extract_metadata(path))
            except TemplateLoadError as e:
                logger.debug("Skipping unreadable template %s: %s", path, e)
        found.sort(key=lambda info: _version_key(info.version), reverse=True)
        found.sort(key=lambda info: info.id)
        return found

    def invalidate_cache_entry(self, path: Path | str) -> bool:
        key = _cache_key(self.resolve_path(path))
        self._last_validation.pop(key, None)
        return self.cache.delete(key)

    def clear_cache(self) -> None:
        self.cache.clear()
        self._last_validation.clear()


def _mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None
