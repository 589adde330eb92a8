"""Bounded in-process cache tier.

Per-instance only: it is a latency fallback, never cross-instance truth.
When full, the oldest written key is evicted.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheRecord:
    data: Any
    written_at: float
    ttl: int

    def expired(self, now: float) -> bool:
        return self.ttl > 0 and now - self.written_at >= self.ttl

    def age(self, now: float) -> float:
        return now - self.written_at

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "written_at": self.written_at, "ttl": self.ttl}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CacheRecord:
        return cls(data=raw["data"], written_at=float(raw["written_at"]), ttl=int(raw["ttl"]))


class LocalCache:
    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            msg = "capacity must be at least 1"
            raise ValueError(msg)
        self._capacity = capacity
        self._records: OrderedDict[str, CacheRecord] = OrderedDict()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: str, now: float) -> CacheRecord | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.expired(now):
            del self._records[key]
            return None
        return record

    def set(self, key: str, record: CacheRecord) -> None:
        # Rewrites count as new writes for eviction order.
        self._records.pop(key, None)
        while len(self._records) >= self._capacity:
            self._records.popitem(last=False)
        self._records[key] = record

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._records if key.startswith(prefix)]
        for key in doomed:
            del self._records[key]
        return len(doomed)

    def clear(self) -> None:
        self._records.clear()
