"""Two-tier read cache.

Primary tier: shared Redis, optional. Fallback tier: a bounded in-process
LocalCache used only while the primary is absent or failing. Every primary
call is bounded by a timeout; a slow or broken primary degrades to a miss,
never to an error for the caller.

Records are stored as JSON ``{"data", "written_at", "ttl"}`` so the age of a
value is known on read (used by stale-while-revalidate).
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from quizarena.cache.local import CacheRecord, LocalCache
from quizarena.errors import TransientCacheError

logger = structlog.get_logger()

Recompute = Callable[[], Awaitable[Any]]

TIER_PRIMARY = "primary"
TIER_LOCAL = "local"


@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    value: Any = None
    tier: str | None = None
    age: float = 0.0


@dataclass(frozen=True)
class WarmEntry:
    key: str
    recompute: Recompute
    ttl: int | None = None


MISS = CacheLookup(hit=False)


class TieredCache:
    def __init__(
        self,
        primary: Redis | None = None,
        *,
        namespace: str = "qza:",
        local_capacity: int = 1000,
        op_timeout: float = 0.25,
        default_ttl: int = 300,
        refresh_after: float | None = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._primary = primary
        self._namespace = namespace
        self._local = LocalCache(local_capacity)
        self._op_timeout = op_timeout
        self._default_ttl = default_ttl
        self._refresh_after = refresh_after
        self._clock = clock
        self._primary_ok = primary is not None
        self._refreshing: dict[str, asyncio.Task[None]] = {}
        self._superseded: set[str] = set()  # in-flight refreshes invalidated meanwhile
        self._stats: Counter[str] = Counter()
        self._served_by: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Primary tier plumbing
    # ------------------------------------------------------------------

    @property
    def has_primary(self) -> bool:
        return self._primary is not None

    @property
    def local(self) -> LocalCache:
        return self._local

    def _pkey(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def _call(self, operation: str, awaitable: Awaitable[Any], timeout: float | None = None) -> Any:
        """Run one primary-tier call under the timeout.

        Raises TransientCacheError on timeout or Redis failure.
        """
        try:
            result = await asyncio.wait_for(awaitable, timeout or self._op_timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            self._stats["errors"] += 1
            if self._primary_ok:
                logger.warning("cache_primary_unavailable", operation=operation, error=repr(exc))
            self._primary_ok = False
            raise TransientCacheError(f"primary cache {operation} failed: {exc!r}") from exc
        if not self._primary_ok:
            logger.info("cache_primary_recovered", operation=operation)
        self._primary_ok = True
        return result

    def _encode(self, value: Any, ttl: int) -> tuple[str, CacheRecord]:
        payload = json.dumps(
            {"data": value, "written_at": self._clock(), "ttl": ttl},
            default=str,
        )
        return payload, CacheRecord.from_dict(json.loads(payload))

    def _decode(self, key: str, raw: str) -> CacheRecord | None:
        try:
            return CacheRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("cache_record_malformed", key=key)
            return None

    def _hit(self, record: CacheRecord, tier: str) -> CacheLookup:
        self._stats["hits"] += 1
        self._served_by[tier] += 1
        return CacheLookup(hit=True, value=record.data, tier=tier, age=record.age(self._clock()))

    def _miss(self) -> CacheLookup:
        self._stats["misses"] += 1
        return MISS

    # ------------------------------------------------------------------
    # Single-key operations
    # ------------------------------------------------------------------

    async def lookup(self, key: str) -> CacheLookup:
        """Value plus the tier that served it. Expired records count as misses."""
        if self._primary is not None:
            try:
                raw = await self._call("get", self._primary.get(self._pkey(key)))
            except TransientCacheError:
                pass
            else:
                if raw is None:
                    return self._miss()
                record = self._decode(key, raw)
                if record is None or record.expired(self._clock()):
                    await self._delete_primary(key)
                    return self._miss()
                return self._hit(record, TIER_PRIMARY)

        record = self._local.get(key, self._clock())
        if record is None:
            return self._miss()
        return self._hit(record, TIER_LOCAL)

    async def get(self, key: str) -> Any | None:
        found = await self.lookup(key)
        return found.value if found.hit else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> str:
        """Store a value. Returns the tier that accepted it."""
        ttl = self._default_ttl if ttl is None else ttl
        payload, record = self._encode(value, ttl)
        self._stats["sets"] += 1
        if self._primary is not None:
            try:
                await self._call("set", self._primary.set(self._pkey(key), payload, ex=ttl if ttl > 0 else None))
            except TransientCacheError:
                pass
            else:
                self._local.delete(key)
                return TIER_PRIMARY
        self._local.set(key, record)
        return TIER_LOCAL

    async def _delete_primary(self, *keys: str) -> None:
        if self._primary is None or not keys:
            return
        try:
            await self._call("delete", self._primary.delete(*(self._pkey(k) for k in keys)))
        except TransientCacheError:
            pass

    async def delete(self, key: str) -> None:
        self._stats["deletes"] += 1
        self._supersede(lambda k: k == key)
        self._local.delete(key)
        await self._delete_primary(key)

    async def delete_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` from both tiers."""
        self._supersede(lambda key: key.startswith(prefix))
        removed = self._local.delete_prefix(prefix)
        if self._primary is None:
            return removed

        async def _scan() -> list[str]:
            return [k async for k in self._primary.scan_iter(match=f"{self._pkey(prefix)}*", count=500)]

        try:
            keys = await self._call("scan", _scan(), timeout=self._op_timeout * 10)
            if keys:
                await self._call("delete", self._primary.delete(*keys))
        except TransientCacheError:
            return removed
        return removed + len(keys)

    def _supersede(self, matches: Callable[[str], bool]) -> None:
        self._superseded.update(key for key in self._refreshing if matches(key))

    async def clear(self) -> int:
        return await self.delete_prefix("")

    # ------------------------------------------------------------------
    # Batch and refresh-ahead
    # ------------------------------------------------------------------

    async def mget(self, keys: Iterable[str]) -> dict[str, Any]:
        """Hits only. Falls back to per-key lookups if the batch call is unusable."""
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        if self._primary is not None and hasattr(self._primary, "mget"):
            try:
                raws = await self._call("mget", self._primary.mget([self._pkey(k) for k in keys]))
            except TransientCacheError:
                pass
            else:
                found: dict[str, Any] = {}
                for key, raw in zip(keys, raws):
                    record = self._decode(key, raw) if raw is not None else None
                    if record is None or record.expired(self._clock()):
                        self._miss()
                        continue
                    found[key] = self._hit(record, TIER_PRIMARY).value
                return found

        results: dict[str, Any] = {}
        for key in keys:
            lookup = await self.lookup(key)
            if lookup.hit:
                results[key] = lookup.value
        return results

    async def get_with_refresh(
        self,
        key: str,
        recompute: Recompute,
        ttl: int | None = None,
        refresh_after: float | None = None,
    ) -> Any:
        """Stale-while-revalidate read.

        A miss recomputes inline. A hit older than ``refresh_after`` is
        returned immediately while one background task recomputes it.
        """
        found = await self.lookup(key)
        if not found.hit:
            value = await recompute()
            await self.set(key, value, ttl)
            return value

        threshold = self._refresh_after if refresh_after is None else refresh_after
        if threshold is not None and found.age >= threshold:
            self._schedule_refresh(key, recompute, ttl)
        return found.value

    def _schedule_refresh(self, key: str, recompute: Recompute, ttl: int | None) -> None:
        if key in self._refreshing:
            return
        task = asyncio.create_task(self._refresh(key, recompute, ttl), name=f"cache-refresh:{key}")
        self._refreshing[key] = task
        task.add_done_callback(lambda _t: self._refresh_done(key))

    def _refresh_done(self, key: str) -> None:
        self._refreshing.pop(key, None)
        self._superseded.discard(key)

    async def _refresh(self, key: str, recompute: Recompute, ttl: int | None) -> None:
        try:
            value = await recompute()
            if key in self._superseded:
                logger.debug("cache_refresh_discarded", key=key)
                return
            await self.set(key, value, ttl)
            self._stats["refreshes"] += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self._stats["refresh_failures"] += 1
            logger.exception("cache_refresh_failed", key=key)

    async def warm(self, entries: Iterable[WarmEntry]) -> dict[str, int]:
        """Recompute and store each entry; one failure does not stop the rest."""
        warmed = failed = 0
        for entry in entries:
            try:
                value = await entry.recompute()
            except Exception:
                failed += 1
                logger.exception("cache_warm_entry_failed", key=entry.key)
                continue
            await self.set(entry.key, value, entry.ttl)
            warmed += 1
        return {"warmed": warmed, "failed": failed}

    async def wait_for_refreshes(self) -> None:
        """Wait for in-flight background refreshes."""
        tasks = list(self._refreshing.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection and shutdown
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        hits = self._stats["hits"]
        misses = self._stats["misses"]
        total = hits + misses
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / total, 4) if total else 0.0,
            "served_by": {TIER_PRIMARY: self._served_by[TIER_PRIMARY], TIER_LOCAL: self._served_by[TIER_LOCAL]},
            "sets": self._stats["sets"],
            "deletes": self._stats["deletes"],
            "errors": self._stats["errors"],
            "refreshes": self._stats["refreshes"],
            "refresh_failures": self._stats["refresh_failures"],
            "refreshes_in_flight": len(self._refreshing),
            "local_size": len(self._local),
            "local_capacity": self._local.capacity,
            "primary_configured": self._primary is not None,
            "primary_available": self._primary is not None and self._primary_ok,
        }

    async def aclose(self) -> None:
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()
