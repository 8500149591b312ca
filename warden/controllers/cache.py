"""Verdict cache shared by pod reconcile workers."""

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from ..models.verdict import PodKey, PodVerdict


@dataclass(frozen=True)
class CacheEntry:
    """Last verdict computed for a pod at a given resource version."""
    resource_version: str
    policy_generation: int
    verdict: PodVerdict
    enforced: bool = False
    enforce_attempts: int = 0


class VerdictCache:
    """Sharded map of pod key to its last verdict.

    Each shard has its own lock, so workers reconciling unrelated pods rarely
    contend. An entry is only returned when both the resource version and the
    namespace policy generation still match.
    """

    def __init__(self, shards: int = 16):
        self._shards: List[Tuple[threading.Lock, Dict[PodKey, CacheEntry]]] = [
            (threading.Lock(), {}) for _ in range(max(1, shards))
        ]

    def _shard(self, key: PodKey):
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: PodKey, resource_version: str, policy_generation: int) -> Optional[CacheEntry]:
        lock, entries = self._shard(key)
        with lock:
            entry = entries.get(key)
        if entry is None:
            return None
        if entry.resource_version != resource_version or entry.policy_generation != policy_generation:
            return None
        return entry

    def peek(self, key: PodKey) -> Optional[CacheEntry]:
        """Return the entry regardless of resource version."""
        lock, entries = self._shard(key)
        with lock:
            return entries.get(key)

    def put(self, key: PodKey, entry: CacheEntry):
        lock, entries = self._shard(key)
        with lock:
            entries[key] = entry

    def update(self, key: PodKey, **changes) -> Optional[CacheEntry]:
        lock, entries = self._shard(key)
        with lock:
            entry = entries.get(key)
            if entry is None:
                return None
            entry = replace(entry, **changes)
            entries[key] = entry
            return entry

    def evict(self, key: PodKey) -> bool:
        lock, entries = self._shard(key)
        with lock:
            return entries.pop(key, None) is not None

    def __len__(self) -> int:
        total = 0
        for lock, entries in self._shards:
            with lock:
                total += len(entries)
        return total
