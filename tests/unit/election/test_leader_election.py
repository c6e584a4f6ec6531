"""Tests for prioritized leader election.

Contenders share one MemoryLockStore and run as tasks on the test loop,
each with a one second lease.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import pytest

from revlead.election import LeaderElection, RunFunction
from revlead.errors import ElectionStartedError, LockPermissionError
from revlead.identity import IdentityConfig
from revlead.revisions import StaticDefaultWatcher
from revlead.store import LockRecord, MemoryLockStore

TEST_LOCK = "test-lock"


class PermissionStore(MemoryLockStore):
    """Memory store whose updates can be denied, like a revoked RBAC rule."""

    def __init__(self) -> None:
        super().__init__()
        self.allow_updates = True

    async def update(
        self, namespace: str, election_id: str, record: LockRecord, version: str
    ) -> str:
        if not self.allow_updates:
            raise LockPermissionError("nope, out of luck", namespace, election_id)
        return await super().update(namespace, election_id, record, version)


class StallingStore(MemoryLockStore):
    """Memory store whose updates hang forever for selected holders."""

    def __init__(self) -> None:
        super().__init__()
        self.stalled: set[str] = set()

    async def update(
        self, namespace: str, election_id: str, record: LockRecord, version: str
    ) -> str:
        if record.holder_identity in self.stalled:
            await asyncio.Event().wait()
        return await super().update(namespace, election_id, record, version)


class ActiveTracker:
    """Tracks which contenders currently run a non-cancelled run function."""

    def __init__(self) -> None:
        self.active: set[str] = set()
        self.overlaps: list[list[str]] = []

    def run_function(self, name: str) -> RunFunction:
        async def track(stop: asyncio.Event) -> None:
            if self.active:
                self.overlaps.append(sorted(self.active | {name}))
            self.active.add(name)
            try:
                await stop.wait()
            finally:
                self.active.discard(name)

        return track


@dataclass
class Contender:
    election: LeaderElection
    stop: asyncio.Event
    task: asyncio.Task[None]
    got_leader: asyncio.Event

    async def close(self) -> None:
        self.stop.set()
        await asyncio.wait_for(self.task, timeout=5.0)


async def create_election(
    store: MemoryLockStore,
    name: str,
    revision: str,
    watcher: StaticDefaultWatcher,
    expect_leader: bool,
    *fns: RunFunction,
) -> Contender:
    identity = IdentityConfig(
        namespace="ns", name=name, election_id=TEST_LOCK, revision=revision, ttl=1.0
    )
    election = LeaderElection(identity, store, oracle=watcher)
    got_leader = asyncio.Event()

    async def signal_leader(stop: asyncio.Event) -> None:
        got_leader.set()

    election.add_run_function(signal_leader)
    for fn in fns:
        election.add_run_function(fn)

    stop = asyncio.Event()
    task = asyncio.create_task(election.run(stop))

    if expect_leader:
        try:
            await asyncio.wait_for(got_leader.wait(), timeout=15.0)
        except asyncio.TimeoutError:
            pytest.fail(f"(pod {name}, revision: {revision}) failed to acquire lease")
    else:
        await asyncio.sleep(1.0)
        if got_leader.is_set():
            pytest.fail(f"(pod {name}, revision: {revision}) unexpectedly acquired lease")

    return Contender(election, stop, task, got_leader)


async def eventually(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.02)


class TestLeaderElection:
    """Tests for LeaderElection contention scenarios."""

    @pytest.mark.asyncio
    async def test_first_contender_leads(self) -> None:
        """The first pod leads and an equal second pod does not."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher()

        p1 = await create_election(store, "pod1", "", watcher, True)
        p2 = await create_election(store, "pod2", "", watcher, False)

        assert p1.election.is_leader
        assert not p2.election.is_leader
        assert p2.election.leader_identity == "pod1"

        await p2.close()
        await p1.close()

        records = await store.list("ns")
        assert list(records) == [TEST_LOCK]
        assert records[TEST_LOCK].holder_identity == "pod1"

    @pytest.mark.asyncio
    async def test_prioritized_leader_election(self) -> None:
        """Leadership converges on the default revision without thrash."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher("red")

        # Revision "green" leads while nobody else contends
        p1 = await create_election(store, "pod1", "green", watcher, True)
        # Revision "red" is the default and preempts "green"
        p2 = await create_election(store, "pod2", "red", watcher, True)
        # Another "red" cannot unseat an equal holder
        p3 = await create_election(store, "pod3", "red", watcher, False)
        # "green" cannot take the lock from "red"
        p4 = await create_election(store, "pod4", "green", watcher, False)

        await eventually(lambda: not p1.election.is_leader)

        await p2.close()
        await p3.close()
        await p4.close()

        # With the previous "red" leader gone, a new "red" pod claims the lock
        p5 = await create_election(store, "pod2", "red", watcher, True)
        await p5.close()
        await p1.close()

        # "green" can lead once no "red" contender remains
        p6 = await create_election(store, "pod4", "green", watcher, True)
        await p6.close()

    @pytest.mark.asyncio
    async def test_default_change_redirects_leadership(self) -> None:
        """Changing the default lets the newly preferred revision preempt."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher("red")

        p1 = await create_election(store, "pod1", "red", watcher, True)
        p2 = await create_election(store, "pod2", "green", watcher, False)

        watcher.set_default("green")

        await asyncio.wait_for(p2.got_leader.wait(), timeout=5.0)
        await eventually(lambda: not p1.election.is_leader)

        await p2.close()
        await p1.close()

    @pytest.mark.asyncio
    async def test_record_removed(self) -> None:
        """Deleting the record out-of-band leaves exactly one record again."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher()
        p1 = await create_election(store, "pod1", "", watcher, True)

        assert await store.delete("ns", TEST_LOCK)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 5.0
        while len(await store.list("ns")) != 1:
            if loop.time() > deadline:
                pytest.fail("lock record was not recreated")
            await asyncio.sleep(0.02)

        assert p1.election.is_leader
        assert p1.election.cycle == 1
        await p1.close()

    @pytest.mark.asyncio
    async def test_no_permission(self) -> None:
        """Losing write permission ends the term; regaining it starts a new one."""
        store = PermissionStore()
        watcher = StaticDefaultWatcher()
        completions = 0

        async def count(stop: asyncio.Event) -> None:
            nonlocal completions
            completions += 1

        p1 = await create_election(store, "pod1", "", watcher, True, count)
        # Expect to run once
        await eventually(lambda: completions == 1)

        # Drop permission to update the record, simulating losing an active lease
        store.allow_updates = False

        # A new cycle starts
        await eventually(lambda: p1.election.cycle == 2)
        assert not p1.election.is_leader
        assert completions == 1

        # Restore permission and get the lock back
        store.allow_updates = True

        await eventually(lambda: completions == 2)
        assert p1.election.cycle == 2
        await p1.close()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_run_functions(self) -> None:
        """Run returns only after the term's run functions observed cancellation."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher()
        events: list[str] = []

        async def worker(stop: asyncio.Event) -> None:
            events.append("started")
            await stop.wait()
            await asyncio.sleep(0.1)
            events.append("cancelled")

        p1 = await create_election(store, "pod1", "", watcher, True, worker)
        await eventually(lambda: events == ["started"])

        await p1.close()

        assert events == ["started", "cancelled"]
        assert not p1.election.is_leader
        assert not p1.election.running

        await asyncio.sleep(0.5)
        assert events == ["started", "cancelled"]

    @pytest.mark.asyncio
    async def test_preempted_leader_cancels_run_functions(self) -> None:
        """A preempted holder's run functions see their term end."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher("red")
        term_stops: list[asyncio.Event] = []

        async def remember(stop: asyncio.Event) -> None:
            term_stops.append(stop)
            await stop.wait()

        p1 = await create_election(store, "pod1", "green", watcher, True, remember)
        p2 = await create_election(store, "pod2", "red", watcher, True)

        await eventually(lambda: term_stops[0].is_set())
        await eventually(lambda: p1.election.cycle >= 2)

        await p2.close()
        await p1.close()

    @pytest.mark.asyncio
    async def test_failing_run_function_is_isolated(self) -> None:
        """A raising run function does not end leadership."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher()

        async def broken(stop: asyncio.Event) -> None:
            raise RuntimeError("boom")

        p1 = await create_election(store, "pod1", "", watcher, True, broken)
        await asyncio.sleep(0.5)

        assert p1.election.is_leader
        assert p1.election.cycle == 1
        await p1.close()

    @pytest.mark.asyncio
    async def test_single_active_leader(self) -> None:
        """Equal contenders never run their terms at the same time, across a handoff."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher()
        tracker = ActiveTracker()

        p1 = await create_election(store, "pod1", "", watcher, True, tracker.run_function("pod1"))
        p2 = await create_election(store, "pod2", "", watcher, False, tracker.run_function("pod2"))
        p3 = await create_election(store, "pod3", "", watcher, False, tracker.run_function("pod3"))

        await asyncio.sleep(3.0)
        assert tracker.active == {"pod1"}

        await p1.close()
        await eventually(lambda: len(tracker.active) == 1 and "pod1" not in tracker.active)
        await asyncio.sleep(2.0)

        assert len(tracker.active) == 1
        assert tracker.overlaps == []
        await p2.close()
        await p3.close()

    @pytest.mark.asyncio
    async def test_stalled_holder_steps_down_before_takeover(self) -> None:
        """A holder whose renewals hang ends its term before another pod can lead."""
        store = StallingStore()
        watcher = StaticDefaultWatcher()
        tracker = ActiveTracker()

        p1 = await create_election(store, "pod1", "", watcher, True, tracker.run_function("pod1"))
        p2 = await create_election(store, "pod2", "", watcher, False, tracker.run_function("pod2"))

        store.stalled.add("pod1")

        await asyncio.wait_for(p2.got_leader.wait(), timeout=5.0)
        assert not p1.election.is_leader
        assert tracker.active == {"pod2"}
        assert tracker.overlaps == []

        await p2.close()
        await p1.close()

    @pytest.mark.asyncio
    async def test_preemption_never_overlaps_terms(self) -> None:
        """The preempted holder's term ends before the preempting pod's term starts."""
        store = MemoryLockStore()
        watcher = StaticDefaultWatcher("red")
        tracker = ActiveTracker()

        p1 = await create_election(
            store, "pod1", "green", watcher, True, tracker.run_function("pod1")
        )
        p2 = await create_election(store, "pod2", "red", watcher, True, tracker.run_function("pod2"))

        await eventually(lambda: tracker.active == {"pod2"})
        assert not p1.election.is_leader
        assert tracker.overlaps == []

        await p2.close()
        await p1.close()


class TestLeaderElectionLifecycle:
    """Tests for registration and start/stop."""

    @pytest.fixture
    def election(self) -> LeaderElection:
        identity = IdentityConfig(namespace="ns", name="pod1", election_id=TEST_LOCK, ttl=1.0)
        return LeaderElection(identity, MemoryLockStore())

    def test_backoff_defaults(self, election: LeaderElection) -> None:
        """A lost term is retried after one lease retry period by default."""
        assert election.backoff == 0.25

    def test_backoff_override(self) -> None:
        """An explicit backoff replaces the default delay."""
        identity = IdentityConfig(namespace="ns", name="pod1", election_id=TEST_LOCK, ttl=1.0)
        election = LeaderElection(identity, MemoryLockStore(), backoff=2.0)

        assert election.backoff == 2.0

    @pytest.mark.asyncio
    async def test_late_registration_rejected(self, election: LeaderElection) -> None:
        """Run functions cannot be added once the election runs."""
        await election.start()

        async def late(stop: asyncio.Event) -> None:
            pass

        with pytest.raises(ElectionStartedError):
            election.add_run_function(late)

        await election.stop()

    @pytest.mark.asyncio
    async def test_run_twice_rejected(self, election: LeaderElection) -> None:
        """An election instance runs only once."""
        await election.start()

        with pytest.raises(ElectionStartedError):
            await election.run(asyncio.Event())

        await election.stop()

    @pytest.mark.asyncio
    async def test_start_stop(self, election: LeaderElection) -> None:
        """start() contends in the background and stop() waits for shutdown."""
        await election.start()

        assert await election.wait_for_leadership(timeout=5.0)
        assert election.running

        await election.stop()

        assert not election.is_leader
        assert not election.running

    @pytest.mark.asyncio
    async def test_wait_for_leadership_timeout(self) -> None:
        """Waiting for leadership held elsewhere times out."""
        store = MemoryLockStore()
        holder = LeaderElection(
            IdentityConfig(namespace="ns", name="pod1", election_id=TEST_LOCK, ttl=1.0), store
        )
        follower = LeaderElection(
            IdentityConfig(namespace="ns", name="pod2", election_id=TEST_LOCK, ttl=1.0), store
        )
        await holder.start()
        assert await holder.wait_for_leadership(timeout=5.0)
        await follower.start()

        assert await follower.wait_for_leadership(timeout=0.5) is False
        assert follower._on_elected == []

        await follower.stop()
        await holder.stop()

    @pytest.mark.asyncio
    async def test_wait_for_leadership_wakes_on_handoff(self) -> None:
        """A pending waiter resolves when this instance's term starts."""
        store = MemoryLockStore()
        holder = LeaderElection(
            IdentityConfig(namespace="ns", name="pod1", election_id=TEST_LOCK, ttl=1.0), store
        )
        follower = LeaderElection(
            IdentityConfig(namespace="ns", name="pod2", election_id=TEST_LOCK, ttl=1.0), store
        )
        await holder.start()
        assert await holder.wait_for_leadership(timeout=5.0)
        await follower.start()

        waiter = asyncio.create_task(follower.wait_for_leadership(timeout=10.0))
        await asyncio.sleep(0.5)
        assert not waiter.done()

        await holder.stop()

        assert await asyncio.wait_for(waiter, timeout=5.0)
        assert follower.is_leader
        assert follower._on_elected == []
        await follower.stop()
