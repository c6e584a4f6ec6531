"""Lock store contract.

A lock store keeps one record per (namespace, election_id) and guards
updates with an opaque version token (optimistic concurrency). It is the
single source of truth for mutual exclusion between contenders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LockRecord:
    """Leader lease as persisted by the store.

    leader_transitions is maintained by the store itself and carried
    forward untouched by the election code.
    """

    holder_identity: str
    holder_revision: str
    renew_time: datetime
    lease_duration: float
    leader_transitions: int = 0

    def expires_at(self) -> datetime:
        return self.renew_time + timedelta(seconds=self.lease_duration)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at()


@dataclass(frozen=True)
class VersionedRecord:
    """A stored record together with the version token guarding it."""

    record: LockRecord
    version: str


def next_transitions(current: LockRecord, new: LockRecord) -> int:
    """Transition count for new once it replaces current."""
    if current.holder_identity != new.holder_identity:
        return current.leader_transitions + 1
    return current.leader_transitions


class LockStore(ABC):
    """Versioned CRUD over one shared lease record per election key."""

    @abstractmethod
    async def get(self, namespace: str, election_id: str) -> VersionedRecord | None:
        """Return the current record, or None if there is none."""

    @abstractmethod
    async def create(self, namespace: str, election_id: str, record: LockRecord) -> str:
        """Create the record if absent and return its version.

        Raises:
            LockExistsError: A record already exists
        """

    @abstractmethod
    async def update(
        self, namespace: str, election_id: str, record: LockRecord, version: str
    ) -> str:
        """Replace the record if its version still matches and return the new version.

        Raises:
            LockConflictError: The record changed or disappeared since it was read
        """

    @abstractmethod
    async def delete(self, namespace: str, election_id: str) -> bool:
        """Remove the record. Never called by the election itself."""

    @abstractmethod
    async def list(self, namespace: str) -> dict[str, LockRecord]:
        """Return every record in a namespace keyed by election id."""
