"""TTL lease loop over a versioned lock store.

The coordinator runs one acquire/renew sequence:

1. Poll the store every retry_period until the lease is acquired. A live
   record held by someone else is only taken over if the key comparison
   allows it; expired, missing, or self-held records are always acquirable.
2. On acquisition call on_started_leading, then renew every retry_period.
3. A renewal round that cannot succeed within renew_deadline, a permission
   failure, or finding another holder in the record ends the term:
   on_stopped_leading is awaited and the error is raised to the caller.

Every store call is bounded: acquisition attempts by retry_period, renewal
attempts by what is left of renew_deadline. A stalled store therefore ends
the term before the record can expire and be taken by someone else.

A preempted holder only learns about the takeover at its next renewal round,
which completes at most retry_period + renew_deadline after the takeover.
A coordinator that took a live lease by preemption keeps renewing for that
long before calling on_started_leading, so the two terms never overlap.

Recovering from a lost term is the caller's job; this loop never retries a
term in place. Records are never deleted or released, a stopped leader
simply stops renewing.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, TypeVar

from revlead.comparator import KeyComparison
from revlead.errors import (
    LeadershipLostError,
    LockConflictError,
    LockExistsError,
    LockPermissionError,
    LockStoreError,
)
from revlead.identity import IdentityConfig
from revlead.observability.metrics import get_metrics
from revlead.store.base import LockRecord, LockStore

logger = logging.getLogger(__name__)

# Retry intervals are stretched by up to this fraction to spread out contenders
JITTER_FACTOR = 0.2

T = TypeVar("T")


@dataclass
class LeaderCallbacks:
    """Hooks invoked by the coordinator.

    on_started_leading receives the term's stop event, which is set when the
    term ends. on_stopped_leading is awaited after every term, whatever ended it.
    on_new_leader is called with the holder identity whenever it changes.
    """

    on_started_leading: Callable[[asyncio.Event], None]
    on_stopped_leading: Callable[[], Awaitable[None]]
    on_new_leader: Callable[[str], None] | None = None


@dataclass
class LeaseConfig:
    identity: IdentityConfig
    store: LockStore
    callbacks: LeaderCallbacks
    key_comparison: KeyComparison | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def wait_for_stop(stop: asyncio.Event, timeout: float) -> bool:
    """Sleep up to timeout seconds. Returns True if stop is set."""
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass
    return stop.is_set()


class LeaseCoordinator:
    """One acquire/renew sequence for a single identity."""

    def __init__(self, config: LeaseConfig):
        self.config = config
        self.identity = config.identity
        self._observed_holder: str | None = None
        self._acquired = False
        self._leading = False
        self._preempted = False

    @property
    def acquired(self) -> bool:
        """True once this coordinator has held the lease at least once."""
        return self._acquired

    @property
    def is_leading(self) -> bool:
        return self._leading

    async def run(self, stop: asyncio.Event) -> None:
        """Acquire the lease and hold it until stop is set.

        Returns None when stop ends the sequence. Raises LeadershipLostError
        or LockPermissionError when a held term ends for any other reason.
        """
        if not await self._acquire(stop):
            return

        self._acquired = True
        if self._preempted and not await self._await_handover(stop):
            return

        term_stop = asyncio.Event()
        self._leading = True
        try:
            self.config.callbacks.on_started_leading(term_stop)
            await self._renew_loop(stop)
            logger.info(f"Stepping down as leader of '{self.identity.election_id}' on shutdown")
        finally:
            self._leading = False
            term_stop.set()
            await self.config.callbacks.on_stopped_leading()

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    async def _acquire(self, stop: asyncio.Event) -> bool:
        election_id = self.identity.election_id
        logger.info(f"Attempting to acquire lease '{self.identity.namespace}/{election_id}'")
        while not stop.is_set():
            try:
                async with asyncio.timeout(self.identity.retry_period):
                    acquired = await self._unless_stopped(stop, self._try_acquire_or_renew())
            except LockStoreError as e:
                self._record_store_error(e)
                logger.warning(f"Failed to acquire lease '{election_id}': {e}")
                acquired = False
            except asyncio.TimeoutError:
                logger.warning(
                    f"Acquiring lease '{election_id}' timed out "
                    f"after {self.identity.retry_period:.2f}s"
                )
                acquired = False

            if acquired is None or stop.is_set():
                return False
            if acquired:
                logger.info(f"Acquired lease '{election_id}'")
                return True

            if await wait_for_stop(stop, self._jittered(self.identity.retry_period)):
                return False
        return False

    async def _try_acquire_or_renew(self) -> bool:
        """One acquisition attempt. False means the lease is held elsewhere or the race was lost."""
        identity = self.identity
        store = self.config.store
        now = _utcnow()
        desired = self._desired_record(now)

        current = await store.get(identity.namespace, identity.election_id)
        if current is None:
            try:
                await store.create(identity.namespace, identity.election_id, desired)
            except LockExistsError:
                return False
            self._observe(identity.name)
            return True

        held = current.record
        self._observe(held.holder_identity)
        if held.holder_identity != identity.name and not held.is_expired(now):
            comparison = self.config.key_comparison
            if comparison is None or not comparison(held.holder_revision):
                return False
            logger.info(
                f"Preempting '{held.holder_identity}' (revision '{held.holder_revision}') "
                f"with revision '{identity.revision}'"
            )
            self._preempted = True

        try:
            await store.update(identity.namespace, identity.election_id, desired, current.version)
        except LockConflictError:
            return False
        self._observe(identity.name)
        return True

    async def _await_handover(self, stop: asyncio.Event) -> bool:
        """Hold a preempted lease until its previous holder must have stepped down.

        Returns False if stop was set first. Raises like a renewal round.
        """
        loop = asyncio.get_running_loop()
        grace = self.identity.retry_period + self.identity.renew_deadline
        ready_at = loop.time() + grace
        logger.info(
            f"Waiting {grace:.2f}s for the previous leader of "
            f"'{self.identity.election_id}' to step down"
        )
        while True:
            remaining = ready_at - loop.time()
            if remaining <= 0:
                return True
            if await wait_for_stop(stop, min(self.identity.retry_period, remaining)):
                return False
            if loop.time() < ready_at and not await self._renew_within_deadline(stop):
                return False

    # -------------------------------------------------------------------------
    # Renewal
    # -------------------------------------------------------------------------

    async def _renew_loop(self, stop: asyncio.Event) -> None:
        while True:
            if await wait_for_stop(stop, self.identity.retry_period):
                return
            if not await self._renew_within_deadline(stop):
                return

    async def _renew_within_deadline(self, stop: asyncio.Event) -> bool:
        """Renew the lease once. Returns False if stop was set while retrying."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.identity.renew_deadline
        last_error: Exception | None = None

        while True:
            try:
                async with asyncio.timeout(max(deadline - loop.time(), 0)):
                    renewed = await self._unless_stopped(stop, self._try_renew())
                if renewed is None:
                    return False
                if renewed:
                    return True
            except LockPermissionError as e:
                self._record_store_error(e)
                logger.error(f"Lost lease '{self.identity.election_id}': {e}")
                raise
            except LockStoreError as e:
                self._record_store_error(e)
                logger.warning(f"Failed to renew lease '{self.identity.election_id}': {e}")
                last_error = e
            except asyncio.TimeoutError as e:
                logger.warning(f"Renewing lease '{self.identity.election_id}' timed out")
                last_error = e

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LeadershipLostError(
                    f"Failed to renew lease '{self.identity.election_id}' "
                    f"within {self.identity.renew_deadline:.2f}s",
                    namespace=self.identity.namespace,
                    election_id=self.identity.election_id,
                ) from last_error
            if await wait_for_stop(stop, min(self.identity.retry_period, remaining)):
                return False

    async def _try_renew(self) -> bool:
        """One renewal attempt. False means a lost race worth retrying."""
        identity = self.identity
        store = self.config.store
        desired = self._desired_record(_utcnow())

        current = await store.get(identity.namespace, identity.election_id)
        if current is None:
            logger.warning(f"Lease record '{identity.election_id}' disappeared, recreating it")
            try:
                await store.create(identity.namespace, identity.election_id, desired)
            except LockExistsError:
                return False
            return True

        holder = current.record.holder_identity
        if holder != identity.name:
            self._observe(holder)
            logger.warning(f"Lease '{identity.election_id}' taken over by '{holder}'")
            raise LeadershipLostError(
                f"Lease '{identity.election_id}' taken over by '{holder}'",
                namespace=identity.namespace,
                election_id=identity.election_id,
                holder=holder,
            )

        try:
            await store.update(identity.namespace, identity.election_id, desired, current.version)
        except LockConflictError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _desired_record(self, now: datetime) -> LockRecord:
        return LockRecord(
            holder_identity=self.identity.name,
            holder_revision=self.identity.revision,
            renew_time=now,
            lease_duration=self.identity.lease_duration,
        )

    def _observe(self, holder: str) -> None:
        if holder == self._observed_holder:
            return
        self._observed_holder = holder
        if holder != self.identity.name:
            logger.info(f"New leader observed for '{self.identity.election_id}': {holder}")
        on_new_leader = self.config.callbacks.on_new_leader
        if on_new_leader is not None:
            on_new_leader(holder)

    def _record_store_error(self, error: LockStoreError) -> None:
        get_metrics().record_store_error(self.identity.election_id, type(error).__name__)

    @staticmethod
    def _jittered(period: float) -> float:
        return period * (1 + random.random() * JITTER_FACTOR)  # nosec B311

    @staticmethod
    async def _unless_stopped(stop: asyncio.Event, coro: Coroutine[Any, Any, T]) -> T | None:
        """Run coro unless stop fires first, in which case it is cancelled and None returned."""
        attempt = asyncio.ensure_future(coro)
        stopped = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({attempt, stopped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            attempt.cancel()
            stopped.cancel()
            raise
        stopped.cancel()
        if not attempt.done():
            attempt.cancel()
            return None
        return attempt.result()
