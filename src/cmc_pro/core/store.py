"""Key-value store collaborator used for cache entries and usage counters.

Two backends implement the :class:`CacheStore` protocol:

- :class:`MemoryStore`: a process-local dict with lazy TTL expiry.  Correct
  only for a single process; used in tests and when no Redis URL is set.
- :class:`RedisStore`: a synchronous ``redis`` client shared by every worker
  and process.  Counters use ``INCRBY``, set-if-absent uses ``SET NX``, and
  the increment-with-ceiling used for credit reservation runs as a Lua script
  so that concurrent workers cannot both pass the quota check.

Besides plain ``get``/``put``/``forget``/``flush`` the protocol exposes three
atomic primitives and an expiring key index:

``increment(key, amount, ttl)``
    Add *amount* to an integer counter and return the new value.  The TTL is
    applied only when the counter is created.

``reserve(key, amount, ceiling, ttl)``
    Like ``increment``, but refuses (returns ``None``) when the new value
    would exceed *ceiling*.  ``ceiling=None`` means unbounded.

``add(key, value, ttl)``
    Store *value* only if *key* is absent.  Returns whether it was stored.

``index_add(key, member, expires_at, now)`` / ``index_members(key, now)`` / ``index_remove(key, members)``
    A set of member names scored by the epoch time they expire at (``None``
    for never).  Adding prunes members that expired at or before *now*, and
    reads only return live members, so an index never outgrows the entries
    it tracks.  On Redis this is a sorted set, so concurrent writers cannot
    lose each other's members.

Typical usage::

    store = RedisStore.from_url("redis://localhost:6379/0", namespace="coinmarketcap:usage:")
    total = store.reserve("2026-10:total", 1, ceiling=10_000)
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Protocol, runtime_checkable

import redis

from cmc_pro.core.exceptions import StoreError

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    """Minimal store contract required by the cache and credit components."""

    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    def forget(self, key: str) -> bool: ...

    def flush(self) -> bool: ...

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int: ...

    def reserve(
        self, key: str, amount: int, ceiling: int | None, ttl: int | None = None
    ) -> int | None: ...

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    def index_add(self, key: str, member: str, expires_at: float | None, now: float) -> None: ...

    def index_members(self, key: str, now: float) -> list[str]: ...

    def index_remove(self, key: str, members: list[str]) -> None: ...


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


@dataclass
class _Slot:
    value: Any
    expires_at: Optional[float]


class MemoryStore:
    """Thread-safe in-process store with lazy expiry.

    Values are deep-copied on the way in and out, so callers never share
    mutable state with the store (matching the serialising backends).

    Args:
        clock: Returns the current epoch time in seconds.  Injected in tests
            to move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, _Slot] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> _Slot | None:
        slot = self._data.get(key)
        if slot is None:
            return None
        if slot.expires_at is not None and slot.expires_at <= self._clock():
            del self._data[key]
            return None
        return slot

    def _expiry(self, ttl: int | None) -> float | None:
        if ttl is None or ttl <= 0:
            return None
        return self._clock() + ttl

    def get(self, key: str) -> Any | None:
        with self._lock:
            slot = self._live(key)
            return None if slot is None else copy.deepcopy(slot.value)

    def put(self, key: str, value: Any, ttl: int | None = None) -> bool:
        with self._lock:
            self._data[key] = _Slot(copy.deepcopy(value), self._expiry(ttl))
        return True

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None and self._data.pop(key, None) is not None

    def flush(self) -> bool:
        with self._lock:
            self._data.clear()
        return True

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        with self._lock:
            return self._increment_locked(key, amount, ttl)

    def reserve(
        self, key: str, amount: int, ceiling: int | None, ttl: int | None = None
    ) -> int | None:
        with self._lock:
            slot = self._live(key)
            current = int(slot.value) if slot is not None else 0
            if ceiling is not None and current + amount > ceiling:
                return None
            return self._increment_locked(key, amount, ttl)

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = _Slot(copy.deepcopy(value), self._expiry(ttl))
            return True

    def index_add(self, key: str, member: str, expires_at: float | None, now: float) -> None:
        with self._lock:
            slot = self._live(key)
            if slot is None or not isinstance(slot.value, dict):
                slot = _Slot({}, None)
                self._data[key] = slot
            scores: dict[str, float] = slot.value
            for name in [name for name, score in scores.items() if score <= now]:
                del scores[name]
            scores[member] = float("inf") if expires_at is None else float(expires_at)

    def index_members(self, key: str, now: float) -> list[str]:
        with self._lock:
            slot = self._live(key)
            if slot is None or not isinstance(slot.value, dict):
                return []
            live = [(score, name) for name, score in slot.value.items() if score > now]
        return [name for _, name in sorted(live)]

    def index_remove(self, key: str, members: list[str]) -> None:
        with self._lock:
            slot = self._live(key)
            if slot is None or not isinstance(slot.value, dict):
                return
            for name in members:
                slot.value.pop(name, None)

    def _increment_locked(self, key: str, amount: int, ttl: int | None) -> int:
        slot = self._live(key)
        if slot is None:
            slot = _Slot(0, self._expiry(ttl))
            self._data[key] = slot
        slot.value = int(slot.value) + amount
        return slot.value


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

# Atomic increment that sets the TTL only when the key has none.
#
# KEYS[1]  counter key
# ARGV[1]  amount
# ARGV[2]  ttl seconds (<= 0 for none)
_LUA_INCREMENT = """
local value = redis.call('INCRBY', KEYS[1], ARGV[1])
local ttl = tonumber(ARGV[2])
if ttl > 0 and redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ttl)
end
return value
"""

# Atomic increment-with-ceiling.
#
# KEYS[1]  counter key
# ARGV[1]  amount
# ARGV[2]  ceiling (negative for unbounded)
# ARGV[3]  ttl seconds (<= 0 for none)
#
# Returns {1, new_value} when reserved, {0, current_value} when refused.
_LUA_RESERVE = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount  = tonumber(ARGV[1])
local ceiling = tonumber(ARGV[2])
local ttl     = tonumber(ARGV[3])
if ceiling >= 0 and current + amount > ceiling then
    return {0, current}
end
local value = redis.call('INCRBY', KEYS[1], amount)
if ttl > 0 and redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ttl)
end
return {1, value}
"""


@dataclass
class RedisStore:
    """Store backed by a synchronous Redis client.

    Every key is prefixed with ``namespace``; :meth:`flush` deletes only keys
    under that namespace, so a cache flush never touches usage counters kept
    in a sibling namespace on the same server.

    Values are JSON-encoded.  Counters are stored as plain integers, which
    are valid JSON, so :meth:`get` reads them back as ``int``.

    Attributes:
        client: A ``redis.Redis`` connection (``decode_responses=True``).
        namespace: Prefix applied to every key.
    """

    client: redis.Redis
    namespace: str = ""
    _sha_increment: str = field(default="", init=False, repr=False)
    _sha_reserve: str = field(default="", init=False, repr=False)

    @classmethod
    def from_url(cls, url: str, namespace: str = "") -> RedisStore:
        """Create a store from a Redis URL such as ``redis://localhost:6379/0``."""
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True), namespace)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    @contextmanager
    def _errors(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise StoreError(f"redis {operation} failed for '{key}': {exc}") from exc

    def _ensure_scripts_loaded(self) -> None:
        """Upload Lua scripts lazily so no connection is needed at construction."""
        if self._sha_increment:
            return
        self._sha_increment = self.client.script_load(_LUA_INCREMENT)
        self._sha_reserve = self.client.script_load(_LUA_RESERVE)

    def _evalsha(self, sha_attr: str, script: str, *args: Any) -> Any:
        self._ensure_scripts_loaded()
        try:
            return self.client.evalsha(getattr(self, sha_attr), 1, *args)
        except redis.exceptions.NoScriptError:
            # Server restarted or SCRIPT FLUSH ran; reload once.
            setattr(self, sha_attr, self.client.script_load(script))
            return self.client.evalsha(getattr(self, sha_attr), 1, *args)

    # ------------------------------------------------------------------
    # CacheStore protocol
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        with self._errors("get", key):
            raw = self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("store: undecodable value under %s; ignoring", key)
            return None

    def put(self, key: str, value: Any, ttl: int | None = None) -> bool:
        payload = json.dumps(value, default=str)
        with self._errors("put", key):
            return bool(self.client.set(self._key(key), payload, ex=ttl if ttl and ttl > 0 else None))

    def forget(self, key: str) -> bool:
        with self._errors("forget", key):
            return bool(self.client.delete(self._key(key)))

    def flush(self) -> bool:
        with self._errors("flush", f"{self.namespace}*"):
            if not self.namespace:
                return bool(self.client.flushdb())
            batch: list[str] = []
            for key in self.client.scan_iter(match=f"{self.namespace}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    self.client.delete(*batch)
                    batch.clear()
            if batch:
                self.client.delete(*batch)
        return True

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        with self._errors("increment", key):
            result = self._evalsha(
                "_sha_increment", _LUA_INCREMENT, self._key(key), amount, ttl or 0
            )
        return int(result)

    def reserve(
        self, key: str, amount: int, ceiling: int | None, ttl: int | None = None
    ) -> int | None:
        with self._errors("reserve", key):
            reserved, value = self._evalsha(
                "_sha_reserve",
                _LUA_RESERVE,
                self._key(key),
                amount,
                -1 if ceiling is None else ceiling,
                ttl or 0,
            )
        return int(value) if int(reserved) == 1 else None

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        payload = json.dumps(value, default=str)
        with self._errors("add", key):
            return bool(
                self.client.set(self._key(key), payload, nx=True, ex=ttl if ttl and ttl > 0 else None)
            )

    def index_add(self, key: str, member: str, expires_at: float | None, now: float) -> None:
        score = float("inf") if expires_at is None else float(expires_at)
        with self._errors("index_add", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.zremrangebyscore(self._key(key), "-inf", now)
            pipe.zadd(self._key(key), {member: score})
            pipe.execute()

    def index_members(self, key: str, now: float) -> list[str]:
        with self._errors("index_members", key):
            return list(self.client.zrangebyscore(self._key(key), f"({now}", "+inf"))

    def index_remove(self, key: str, members: list[str]) -> None:
        if not members:
            return
        with self._errors("index_remove", key):
            self.client.zrem(self._key(key), *members)
