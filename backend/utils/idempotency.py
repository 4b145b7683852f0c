"""
Idempotency Cache

Prevents duplicate downstream writes when the same logical operation is
attempted more than once (client-side retries, re-running a whole
reconciliation after a partial failure).

Key = sha256 of a canonical JSON serialisation of
{identity, operation, arguments-with-sorted-keys}.

Entries expire after a TTL (default 24h). Expired entries are evicted
lazily: on lookup of the expired key, and by a sweep on every insert.
There is no background sweeper.

Same-key callers within one process are serialised by a per-key
asyncio.Lock, so two concurrent misses cannot both execute the
operation. Cross-process deduplication needs an external store with
compare-and-set semantics.
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class IdempotencyRecord:
    """A cached operation result."""
    key: str
    result: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def generate_idempotency_key(identity: Any, operation_name: str, args: Mapping[str, Any]) -> str:
    """
    Deterministic idempotency key for (identity, operation, arguments).

    Argument keys are sorted before hashing so construction order does not
    change the key.
    """
    payload = json.dumps(
        {
            "identity": identity,
            "operation": operation_name,
            "args": {k: args[k] for k in sorted(args)}
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"idem_{digest[:32]}"


class IdempotencyCache:
    """
    In-process idempotency store.

    Owned by whoever drives sync runs and passed explicitly down the call
    chain; there is no module-level instance.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, IdempotencyRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.check(key) is not None

    generate_key = staticmethod(generate_idempotency_key)

    def check(self, key: str) -> Optional[IdempotencyRecord]:
        """Return the cached record if present and unexpired, else None."""
        record = self._entries.get(key)
        if record is None:
            return None

        now = self._clock()
        if record.is_expired(now):
            logger.debug("Idempotency key expired", extra={"key": key})
            del self._entries[key]
            return None

        logger.info(
            "Idempotency cache hit - returning cached result",
            extra={"key": key, "age_seconds": round(now - record.created_at, 3)}
        )
        return record

    def store(self, key: str, result: Any, ttl_seconds: Optional[float] = None) -> IdempotencyRecord:
        """Insert or overwrite a result with expires_at = now + ttl."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()

        self._cleanup_expired(now)

        record = IdempotencyRecord(
            key=key,
            result=result,
            created_at=now,
            expires_at=now + ttl
        )
        self._entries[key] = record

        logger.debug(
            "Stored idempotency result",
            extra={
                "key": key,
                "ttl_seconds": ttl,
                "expires_at": datetime.fromtimestamp(record.expires_at, tz=timezone.utc).isoformat()
            }
        )
        return record

    async def with_idempotency(
        self,
        identity: Any,
        operation_name: str,
        args: Mapping[str, Any],
        operation: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
        enabled: bool = True
    ) -> Any:
        """
        Run ``operation`` unless an identical call already succeeded.

        On a hit the cached result is returned and ``operation`` is not
        called. Failures are not cached.
        """
        if not enabled:
            return await operation()

        key = generate_idempotency_key(identity, operation_name, args)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1

        try:
            async with lock:
                cached = self.check(key)
                if cached is not None:
                    self.hits += 1
                    logger.info(
                        "Returning cached result (duplicate operation prevented)",
                        extra={"identity": identity, "operation": operation_name, "key": key}
                    )
                    return cached.result

                self.misses += 1
                logger.debug(
                    "No cached result, executing operation",
                    extra={"identity": identity, "operation": operation_name, "key": key}
                )
                result = await operation()
                self.store(key, result, ttl_seconds)
                return result
        finally:
            self._release_lock(key)

    def _release_lock(self, key: str):
        remaining = self._lock_users.get(key, 0) - 1
        if remaining > 0:
            self._lock_users[key] = remaining
            return

        self._lock_users.pop(key, None)
        # Failed operations leave no entry, so nothing else needs the lock
        if key not in self._entries:
            self._locks.pop(key, None)

    def invalidate(self, key: str) -> bool:
        """Drop a key so the operation can be re-executed."""
        if key in self._entries:
            del self._entries[key]
            logger.info("Invalidated idempotency key", extra={"key": key})
            return True
        return False

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        active = sum(1 for r in self._entries.values() if not r.is_expired(now))
        lookups = self.hits + self.misses
        return {
            "total_keys": len(self._entries),
            "active_keys": active,
            "expired_keys": len(self._entries) - active,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else None
        }

    def clear(self):
        self._entries.clear()
        self._locks.clear()
        self._lock_users.clear()
        self.hits = 0
        self.misses = 0

    def _cleanup_expired(self, now: float):
        expired = [k for k, r in self._entries.items() if r.is_expired(now)]
        for k in expired:
            del self._entries[k]
            if k not in self._lock_users:
                self._locks.pop(k, None)
        if expired:
            logger.debug("Cleaned up expired idempotency keys", extra={"deleted_count": len(expired)})
