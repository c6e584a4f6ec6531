"""Redis-backed lock store.

Each lease lives in one Redis string holding a JSON document:

    {"holder_identity": "...", "holder_revision": "...",
     "renew_time": "2026-01-10T12:34:56.789+00:00", "lease_duration": 30.0,
     "leader_transitions": 3, "version": 17}

Creation uses SET NX. Updates run a Lua script that compares the stored
version, bumps it, and maintains the transition counter in one atomic step.
The key carries no Redis TTL: expiry is judged from renew_time so that a
holder's lease can still be preempted or taken over after it lapses.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable
from datetime import datetime
from typing import TYPE_CHECKING, Any, cast

import orjson
from redis.exceptions import AuthenticationError, NoPermissionError, RedisError

from revlead.errors import LockConflictError, LockExistsError, LockPermissionError, LockStoreError
from revlead.store.base import LockRecord, LockStore, VersionedRecord

if TYPE_CHECKING:
    from redis.asyncio import Redis

DEFAULT_KEY_PREFIX = "revlead:lock:"

# Returns the new version, 0 when the stored version differs, -1 when the key is gone
UPDATE_SCRIPT = """
local current = redis.call("get", KEYS[1])
if not current then
    return -1
end
local stored = cjson.decode(current)
if tostring(stored["version"]) ~= ARGV[1] then
    return 0
end
local record = cjson.decode(ARGV[2])
local transitions = tonumber(stored["leader_transitions"]) or 0
if stored["holder_identity"] ~= record["holder_identity"] then
    transitions = transitions + 1
end
record["leader_transitions"] = transitions
record["version"] = tonumber(stored["version"]) + 1
redis.call("set", KEYS[1], cjson.encode(record))
return record["version"]
"""


def _encode(record: LockRecord, version: int | None = None) -> bytes:
    payload: dict[str, Any] = {
        "holder_identity": record.holder_identity,
        "holder_revision": record.holder_revision,
        "renew_time": record.renew_time.isoformat(),
        "lease_duration": record.lease_duration,
        "leader_transitions": record.leader_transitions,
    }
    if version is not None:
        payload["version"] = version
    return orjson.dumps(payload)


def _decode(raw: bytes | str) -> VersionedRecord:
    data = orjson.loads(raw)
    record = LockRecord(
        holder_identity=data.get("holder_identity", ""),
        holder_revision=data.get("holder_revision", ""),
        renew_time=datetime.fromisoformat(data["renew_time"]),
        lease_duration=float(data["lease_duration"]),
        leader_transitions=int(data.get("leader_transitions", 0)),
    )
    return VersionedRecord(record, str(int(data["version"])))


class RedisLockStore(LockStore):
    """Lock store keeping lease records in Redis.

    Args:
        client: redis.asyncio client
        key_prefix: Prefix for every lock key
    """

    def __init__(self, client: Redis, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.client = client
        self.key_prefix = key_prefix

    def key_for(self, namespace: str, election_id: str) -> str:
        return f"{self.key_prefix}{namespace}:{election_id}"

    def _translate(self, exc: RedisError, namespace: str, election_id: str) -> LockStoreError:
        if isinstance(exc, (NoPermissionError, AuthenticationError)):
            return LockPermissionError(
                f"Permission denied for lock '{election_id}': {exc}",
                namespace=namespace,
                election_id=election_id,
            )
        return LockStoreError(
            f"Redis error for lock '{election_id}': {exc}",
            namespace=namespace,
            election_id=election_id,
        )

    async def get(self, namespace: str, election_id: str) -> VersionedRecord | None:
        try:
            raw = await self.client.get(self.key_for(namespace, election_id))
        except RedisError as e:
            raise self._translate(e, namespace, election_id) from e
        if raw is None:
            return None
        try:
            return _decode(raw)
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise LockStoreError(
                f"Malformed lock record for '{election_id}': {e}",
                namespace=namespace,
                election_id=election_id,
            ) from e

    async def create(self, namespace: str, election_id: str, record: LockRecord) -> str:
        record = dataclasses.replace(record, leader_transitions=0)
        try:
            created = await self.client.set(
                self.key_for(namespace, election_id),
                _encode(record, version=1),
                nx=True,  # Only set if not exists
            )
        except RedisError as e:
            raise self._translate(e, namespace, election_id) from e
        if not created:
            raise LockExistsError(
                f"Lock '{election_id}' already exists",
                namespace=namespace,
                election_id=election_id,
            )
        return "1"

    async def update(
        self, namespace: str, election_id: str, record: LockRecord, version: str
    ) -> str:
        try:
            result = await cast(
                Awaitable[int],
                self.client.eval(
                    UPDATE_SCRIPT,
                    1,
                    self.key_for(namespace, election_id),
                    version,
                    _encode(record),
                ),
            )
        except RedisError as e:
            raise self._translate(e, namespace, election_id) from e
        if int(result) <= 0:
            raise LockConflictError(
                f"Lock '{election_id}' changed since version {version}",
                namespace=namespace,
                election_id=election_id,
            )
        return str(int(result))

    async def delete(self, namespace: str, election_id: str) -> bool:
        try:
            removed = await self.client.delete(self.key_for(namespace, election_id))
        except RedisError as e:
            raise self._translate(e, namespace, election_id) from e
        return bool(removed)

    async def list(self, namespace: str) -> dict[str, LockRecord]:
        prefix = f"{self.key_prefix}{namespace}:"
        records: dict[str, LockRecord] = {}
        try:
            async for key in self.client.scan_iter(match=f"{prefix}*"):
                key_str = key.decode() if isinstance(key, bytes) else key
                raw = await self.client.get(key_str)
                if raw is not None:
                    records[key_str[len(prefix) :]] = _decode(raw).record
        except RedisError as e:
            raise self._translate(e, namespace, "*") from e
        return records
