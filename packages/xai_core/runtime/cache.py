import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from packages.contracts.payloads import ExplanationRecord


@dataclass
class CacheEntry:
    record: ExplanationRecord
    inserted_at: float  # Seconds on the cache's clock


class ExplanationCache:
    """
    In-memory TTL cache of finalized explanation records, keyed by fingerprint.
    Entries expire once `now - inserted_at > ttl`; the oldest entry is evicted
    when the cache is full.
    """

    def __init__(
        self,
        ttl_ms: int,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = ttl_ms / 1000.0
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> ExplanationRecord | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if self.clock() - entry.inserted_at > self.ttl_s:
                del self._entries[fingerprint]
                return None
            return entry.record

    def put(self, fingerprint: str, record: ExplanationRecord):
        with self._lock:
            self._entries.pop(fingerprint, None)
            self._entries[fingerprint] = CacheEntry(record, self.clock())
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
