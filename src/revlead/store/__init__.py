"""Lock stores holding the shared lease record of an election."""

from revlead.store.base import LockRecord, LockStore, VersionedRecord
from revlead.store.memory import MemoryLockStore
from revlead.store.redis import RedisLockStore

__all__ = [
    "LockRecord",
    "LockStore",
    "MemoryLockStore",
    "RedisLockStore",
    "VersionedRecord",
]
