"""Redis client utilities and the Redis-backed record store."""
import json
import os
import redis
from redis.exceptions import RedisError, WatchError
from typing import Any, List, Optional

from shared.errors import Conflict, StoreUnavailable
from shared.record_store import RecordStore, StoredValue


REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))

# Insertion order for scan(); Redis SCAN itself is unordered.
KEY_ORDER_SET = "kv:order"
KEY_SEQUENCE = "kv:seq"


def create_redis_client() -> redis.Redis:
    """Create a Redis client."""
    return redis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        decode_responses=True
    )


def _decode(raw: str) -> StoredValue:
    envelope = json.loads(raw)
    return StoredValue(envelope["value"], envelope["version"])


class RedisRecordStore(RecordStore):
    """Record store over plain Redis strings.

    Each key holds a JSON envelope ``{"version": n, "value": ...}``. Versioned
    writes use WATCH/MULTI so a concurrent writer on the same key turns into
    a Conflict instead of a lost update.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[StoredValue]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            raise StoreUnavailable(f"Redis read failed for {key}: {e}") from e
        return _decode(raw) if raw else None

    def put(self, key: str, value: Any, expected_version: Optional[int] = None) -> int:
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(key)
                raw = pipe.get(key)
                current = _decode(raw).version if raw else 0
                if expected_version is not None and current != expected_version:
                    raise Conflict(
                        f"Version mismatch on {key}: expected {expected_version}, found {current}"
                    )
                seq = pipe.incr(KEY_SEQUENCE) if not raw else None

                pipe.multi()
                pipe.set(key, json.dumps({"version": current + 1, "value": value}))
                if seq is not None:
                    pipe.zadd(KEY_ORDER_SET, {key: seq}, nx=True)
                pipe.execute()
        except WatchError as e:
            raise Conflict(f"Concurrent write on {key}") from e
        except RedisError as e:
            raise StoreUnavailable(f"Redis write failed for {key}: {e}") from e
        return current + 1

    def scan(self, prefix: str) -> List[StoredValue]:
        try:
            keys = [k for k in self.client.zrange(KEY_ORDER_SET, 0, -1) if k.startswith(prefix)]
            if not keys:
                return []
            raws = self.client.mget(keys)
        except RedisError as e:
            raise StoreUnavailable(f"Redis scan failed for {prefix}: {e}") from e
        return [_decode(raw) for raw in raws if raw]
