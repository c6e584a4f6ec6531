"""Error taxonomy for revision-aware leader election.

Failures are split by how the coordinator reacts to them:
- LockStoreError: transient read/network failure, retried with backoff
- LockPermissionError: write denied, ends the current term
- LockConflictError / LockExistsError: lost race, never fatal, triggers a re-poll
- LeadershipLostError: a held term ended for a reason other than shutdown

Nothing in this package terminates the process; the worst outcome is a
sequence of non-leading cycles.
"""

from __future__ import annotations


class ElectionError(Exception):
    """Base exception for leader election errors."""

    def __init__(self, message: str, namespace: str = "", election_id: str = ""):
        self.namespace = namespace
        self.election_id = election_id
        super().__init__(message)


class LockStoreError(ElectionError):
    """Transient failure talking to the lock store."""

    pass


class LockPermissionError(LockStoreError):
    """The lock store refused a write (or read) for lack of permission."""

    pass


class LockConflictError(ElectionError):
    """Version-guarded update lost against a concurrent writer."""

    pass


class LockExistsError(ElectionError):
    """Create-if-absent found an existing record."""

    pass


class LeadershipLostError(ElectionError):
    """A held lease was lost to preemption or a missed renewal deadline."""

    def __init__(
        self,
        message: str,
        namespace: str = "",
        election_id: str = "",
        holder: str | None = None,
    ):
        self.holder = holder
        super().__init__(message, namespace=namespace, election_id=election_id)


class ElectionStartedError(ElectionError, RuntimeError):
    """Run functions can no longer be registered once the election runs."""

    pass
