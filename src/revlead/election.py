"""Revision-aware leader election.

Runs singleton work on exactly one instance of a fleet that may be running
several revisions during a rollout. Leadership converges on whichever
revision the operator designates as default: a default-revision contender
may take the lease from a holder running another revision, while contenders
of equal priority wait for the holder to stop.

Example:
    identity = IdentityConfig(namespace="prod", name="pod-1",
                              election_id="scheduler", revision="v2")
    election = LeaderElection(identity, store, oracle=watcher)

    async def reconcile(stop: asyncio.Event) -> None:
        while not stop.is_set():
            await do_singleton_work()
            await asyncio.sleep(1)

    election.add_run_function(reconcile)
    await election.run(stop)

Each run of the election is a sequence of cycles. A cycle drives one lease
coordinator until shutdown or until a held term ends (preemption, renewal
failure, permission denial); the next cycle starts after a fixed backoff.
Store errors while acquiring never end a cycle, they are retried in place.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Callable

from revlead.comparator import prioritized_comparison
from revlead.errors import ElectionError, ElectionStartedError
from revlead.identity import IdentityConfig
from revlead.lease import LeaderCallbacks, LeaseConfig, LeaseCoordinator, wait_for_stop
from revlead.observability.logging import LogContext
from revlead.observability.metrics import get_metrics
from revlead.revisions import DefaultRevisionOracle
from revlead.store.base import LockStore

logger = logging.getLogger(__name__)

RunFunction = Callable[[asyncio.Event], Awaitable[None]]


class LeaderElection:
    """Prioritized leader election for one instance.

    Args:
        identity: Static identity of this instance
        store: Lock store shared by every contender
        oracle: Source of the default revision (None disables preemption)
        backoff: Delay before the next cycle after a lost term
            (default: the lease retry period)
    """

    def __init__(
        self,
        identity: IdentityConfig,
        store: LockStore,
        oracle: DefaultRevisionOracle | None = None,
        backoff: float | None = None,
    ):
        self.identity = identity
        self.store = store
        self.oracle = oracle
        self.backoff = backoff if backoff is not None else identity.retry_period

        self._run_functions: list[RunFunction] = []
        self._cycle = 0
        self._is_leader = False
        self._leader_identity: str | None = None
        self._started = False
        self._running = False
        self._term_tasks: list[asyncio.Task[None]] = []
        self._on_elected: list[asyncio.Future[None]] = []

        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def cycle(self) -> int:
        """Number of lease coordinator (re)starts so far."""
        return self._cycle

    @property
    def is_leader(self) -> bool:
        """Check if this instance is currently the leader."""
        return self._is_leader

    @property
    def leader_identity(self) -> str | None:
        """Holder identity most recently observed in the lock record."""
        return self._leader_identity

    @property
    def running(self) -> bool:
        return self._running

    def add_run_function(self, fn: RunFunction) -> None:
        """Register work to run once per leadership term.

        Run functions are started concurrently, in registration order, every
        time leadership is acquired, and receive an event that is set when
        the term ends.

        Raises:
            ElectionStartedError: The election is already running
        """
        if self._started:
            raise ElectionStartedError(
                "Run functions must be registered before the election starts",
                namespace=self.identity.namespace,
                election_id=self.identity.election_id,
            )
        self._run_functions.append(fn)

    async def run(self, stop: asyncio.Event) -> None:
        """Contend for leadership until stop is set.

        Returns only after the current term, if any, has ended and all of its
        run functions have returned.
        """
        self._mark_started()
        await self._run(stop)

    async def _run(self, stop: asyncio.Event) -> None:
        identity = self.identity
        metrics = get_metrics()
        with LogContext(
            election_id=identity.election_id, identity=identity.name, revision=identity.revision
        ):
            try:
                while not stop.is_set():
                    self._cycle += 1
                    metrics.record_cycle(identity.election_id)
                    coordinator = self._create_coordinator()
                    try:
                        await coordinator.run(stop)
                    except ElectionError as e:
                        if stop.is_set():
                            break
                        logger.warning(
                            f"Leader election cycle {self._cycle} lost: {e}. "
                            f"Trying again in {self.backoff:.2f}s"
                        )
                        if await wait_for_stop(stop, self.backoff):
                            break
                        continue
                    break
            finally:
                self._running = False
                logger.info(f"Leader election '{identity.election_id}' stopped")

    async def start(self) -> None:
        """Run the election in a background task."""
        if self._task is not None:
            return
        self._mark_started()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info(
            f"Started leader election for '{self.identity.election_id}' as {self.identity.name}"
        )

    async def stop(self) -> None:
        """Stop a background election and wait for its run functions to return."""
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None

    async def wait_for_leadership(self, timeout: float | None = None) -> bool:
        """Wait until this instance becomes the leader.

        Args:
            timeout: Maximum time to wait in seconds (None = wait forever)

        Returns:
            True if leadership was acquired, False if timeout
        """
        if self._is_leader:
            return True

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._on_elected.append(future)

        try:
            await asyncio.wait_for(future, timeout=timeout)
            return True
        except asyncio.TimeoutError:
            if future in self._on_elected:
                self._on_elected.remove(future)
            return False

    def _mark_started(self) -> None:
        if self._started:
            raise ElectionStartedError(
                f"Leader election '{self.identity.election_id}' was already started",
                namespace=self.identity.namespace,
                election_id=self.identity.election_id,
            )
        self._started = True
        self._running = True

    def _create_coordinator(self) -> LeaseCoordinator:
        return LeaseCoordinator(
            LeaseConfig(
                identity=self.identity,
                store=self.store,
                key_comparison=prioritized_comparison(self.identity.revision, self.oracle),
                callbacks=LeaderCallbacks(
                    on_started_leading=self._on_started_leading,
                    on_stopped_leading=self._on_stopped_leading,
                    on_new_leader=self._on_new_leader,
                ),
            )
        )

    def _on_started_leading(self, term_stop: asyncio.Event) -> None:
        self._is_leader = True
        get_metrics().record_leading(self.identity.election_id, self.identity.name, True)
        logger.info(
            f"Started leading '{self.identity.election_id}' in cycle {self._cycle} "
            f"with {len(self._run_functions)} run function(s)"
        )
        self._term_tasks = [
            asyncio.create_task(self._invoke(fn, term_stop)) for fn in self._run_functions
        ]
        for future in self._on_elected:
            if not future.done():
                future.set_result(None)
        self._on_elected.clear()

    async def _on_stopped_leading(self) -> None:
        self._is_leader = False
        get_metrics().record_leading(self.identity.election_id, self.identity.name, False)
        tasks, self._term_tasks = self._term_tasks, []
        if tasks:
            await asyncio.gather(*tasks)
        logger.info(f"Stopped leading '{self.identity.election_id}'")

    def _on_new_leader(self, holder: str) -> None:
        self._leader_identity = holder

    @staticmethod
    async def _invoke(fn: RunFunction, term_stop: asyncio.Event) -> None:
        try:
            await fn(term_stop)
        except Exception:
            logger.exception(f"Run function {getattr(fn, '__name__', fn)!r} failed")
