"""revlead: revision-aware leader election.

Exactly one instance of a fleet runs the registered singleton work, and
leadership migrates toward the operator-designated default revision.

Example:
    from revlead import IdentityConfig, LeaderElection, MemoryLockStore

    election = LeaderElection(IdentityConfig("ns", "pod-1", "my-lock"), MemoryLockStore())
    election.add_run_function(work)
    await election.run(stop)
"""

from revlead.comparator import allow_preemption, prioritized_comparison
from revlead.election import LeaderElection, RunFunction
from revlead.errors import (
    ElectionError,
    ElectionStartedError,
    LeadershipLostError,
    LockConflictError,
    LockExistsError,
    LockPermissionError,
    LockStoreError,
)
from revlead.identity import IdentityConfig, generate_instance_id
from revlead.lease import LeaderCallbacks, LeaseConfig, LeaseCoordinator
from revlead.revisions import DefaultRevisionOracle, RedisDefaultWatcher, StaticDefaultWatcher
from revlead.store import LockRecord, LockStore, MemoryLockStore, RedisLockStore, VersionedRecord

__all__ = [
    "DefaultRevisionOracle",
    "ElectionError",
    "ElectionStartedError",
    "IdentityConfig",
    "LeaderCallbacks",
    "LeaderElection",
    "LeadershipLostError",
    "LeaseConfig",
    "LeaseCoordinator",
    "LockConflictError",
    "LockExistsError",
    "LockPermissionError",
    "LockRecord",
    "LockStore",
    "LockStoreError",
    "MemoryLockStore",
    "RedisDefaultWatcher",
    "RedisLockStore",
    "RunFunction",
    "StaticDefaultWatcher",
    "VersionedRecord",
    "allow_preemption",
    "generate_instance_id",
    "prioritized_comparison",
]
