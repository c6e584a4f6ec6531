"""In-process lock store.

Every operation completes without yielding to the event loop, so each one
is atomic with respect to other tasks sharing the loop. Intended for
single-process deployments and for tests.
"""

from __future__ import annotations

import dataclasses

from revlead.errors import LockConflictError, LockExistsError
from revlead.store.base import LockRecord, LockStore, VersionedRecord, next_transitions


class MemoryLockStore(LockStore):
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], VersionedRecord] = {}
        self._counter = 0

    def _next_version(self) -> str:
        self._counter += 1
        return str(self._counter)

    async def get(self, namespace: str, election_id: str) -> VersionedRecord | None:
        return self._records.get((namespace, election_id))

    async def create(self, namespace: str, election_id: str, record: LockRecord) -> str:
        key = (namespace, election_id)
        if key in self._records:
            raise LockExistsError(
                f"Lock '{election_id}' already exists",
                namespace=namespace,
                election_id=election_id,
            )
        version = self._next_version()
        self._records[key] = VersionedRecord(
            dataclasses.replace(record, leader_transitions=0), version
        )
        return version

    async def update(
        self, namespace: str, election_id: str, record: LockRecord, version: str
    ) -> str:
        key = (namespace, election_id)
        current = self._records.get(key)
        if current is None or current.version != version:
            raise LockConflictError(
                f"Lock '{election_id}' changed since version {version}",
                namespace=namespace,
                election_id=election_id,
            )
        new_version = self._next_version()
        stored = dataclasses.replace(
            record, leader_transitions=next_transitions(current.record, record)
        )
        self._records[key] = VersionedRecord(stored, new_version)
        return new_version

    async def delete(self, namespace: str, election_id: str) -> bool:
        return self._records.pop((namespace, election_id), None) is not None

    async def list(self, namespace: str) -> dict[str, LockRecord]:
        return {
            election_id: versioned.record
            for (ns, election_id), versioned in self._records.items()
            if ns == namespace
        }
