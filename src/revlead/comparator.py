"""Revision priority rule deciding when a contender may unseat a live holder."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from revlead.revisions import DefaultRevisionOracle

KeyComparison = Callable[[str], bool]


def allow_preemption(contender_revision: str, holder_revision: str, default_revision: str) -> bool:
    """Return True if the contender may take the lease from a live holder.

    Only a contender running the default revision may preempt, and only a
    holder that is not running it. Equal priorities never unseat each other.
    """
    return contender_revision == default_revision and holder_revision != default_revision


def prioritized_comparison(
    revision: str, oracle: DefaultRevisionOracle | None
) -> KeyComparison:
    """Bind the preemption rule to this instance's revision and the oracle.

    The default revision is read from the oracle on every call. Without an
    oracle there is no preferred revision and holders are never preempted.
    """

    def compare(holder_revision: str) -> bool:
        if oracle is None:
            return False
        return allow_preemption(revision, holder_revision, oracle.get_default())

    return compare
