from __future__ import annotations

import logging
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from checklist_templates.errors import TemplateCacheError
from checklist_templates.models import ChecklistTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedTemplate:
    path: str
    content: ChecklistTemplate
    loaded_at: float
    mtime_ns: int | None = None


@dataclass
class CacheStatistics:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0


class TemplateCache:
    """
    LRU cache of loaded templates keyed by path, with a max entry age.

    `get` refreshes recency; inserting a new key into a full cache evicts the
    least recently used entry. Expired entries are dropped when touched or by
    `prune_expired()`.
    """

    def __init__(
        self,
        *,
        max_size: int = 100,
        max_age: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"Template cache max_size must be at least 1, got {max_size}.")
        if max_age <= 0:
            raise ValueError(f"Template cache max_age must be positive, got {max_age}.")
        self.max_size = max_size
        self.max_age = max_age
        self._clock = clock
        self._entries: OrderedDict[str, CachedTemplate] = OrderedDict()
        self._stats = CacheStatistics()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CachedTemplate) -> bool:
        return self._clock() - entry.loaded_at > self.max_age

    def _drop(self, key: str) -> None:
        del self._entries[key]
        self._stats.size = len(self._entries)

    def get(self, path: str) -> CachedTemplate | None:
        entry = self._entries.get(path)
        if entry is None:
            self._stats.misses += 1
            return None
        if self._expired(entry):
            self._drop(path)
            self._stats.misses += 1
            logger.debug("Template cache entry expired: %s", path)
            return None
        self._entries.move_to_end(path)
        self._stats.hits += 1
        return entry

    def set(self, path: str, template: ChecklistTemplate, *, mtime_ns: int | None = None) -> None:
        if path in self._entries:
            self._entries.move_to_end(path)
        elif len(self._entries) >= self.max_size:
            oldest, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Template cache evicted %s", oldest)
        self._entries[path] = CachedTemplate(
            path=path, content=template, loaded_at=self._clock(), mtime_ns=mtime_ns
        )
        self._stats.size = len(self._entries)

    def has(self, path: str) -> bool:
        entry = self._entries.get(path)
        if entry is None:
            return False
        if self._expired(entry):
            self._drop(path)
            return False
        return True

    def delete(self, path: str) -> bool:
        if path not in self._entries:
            return False
        self._drop(path)
        return True

    def clear(self) -> None:
        self._stats.evictions += len(self._entries)
        self._entries.clear()
        self._stats.size = 0

    def prune_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug("Template cache pruned %d expired entries", len(expired))
        return len(expired)

    def paths(self) -> list[str]:
        return list(self._entries)

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            self._drop(key)
        return len(matched)

    def statistics(self) -> CacheStatistics:
        return CacheStatistics(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            size=self._stats.size,
        )

    def hit_rate(self) -> float:
        total = self._stats.hits + self._stats.misses
        return self._stats.hits / total if total else 0.0

    def reset_statistics(self) -> None:
        self._stats = CacheStatistics(size=len(self._entries))

    def validate_integrity(self) -> None:
        if self._stats.size != len(self._entries):
            raise TemplateCacheError(
                "integrity check",
                f"size mismatch: stats report {self._stats.size}, cache holds "
                f"{len(self._entries)}",
                details={"stats_size": self._stats.size, "actual_size": len(self._entries)},
            )
        if len(self._entries) > self.max_size:
            raise TemplateCacheError(
                "integrity check",
                f"cache holds {len(self._entries)} entries, above max_size {self.max_size}",
            )
