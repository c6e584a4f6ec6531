"""Static identity of one election participant."""

from __future__ import annotations

import os
from dataclasses import dataclass
from uuid import uuid4

DEFAULT_LEASE_TTL = 30.0  # Seconds


def generate_instance_id() -> str:
    """Generate a unique instance ID for leader identification."""
    hostname = os.environ.get("HOSTNAME", os.environ.get("POD_NAME", "unknown"))
    return f"{hostname}-{uuid4().hex[:8]}"


@dataclass(frozen=True)
class IdentityConfig:
    """Who this instance is and which election it joins.

    Args:
        namespace: Scope the lock record lives in
        name: Holder identity written into the lock record
        election_id: Lock key shared by every contender of one election
        revision: Software revision of this instance ("" means unversioned)
        ttl: Lease duration in seconds
    """

    namespace: str
    name: str
    election_id: str
    revision: str = ""
    ttl: float = DEFAULT_LEASE_TTL

    def __post_init__(self) -> None:
        for attr in ("namespace", "name", "election_id"):
            if not getattr(self, attr):
                raise ValueError(f"IdentityConfig.{attr} must not be empty")
        if self.ttl <= 0:
            raise ValueError(f"IdentityConfig.ttl must be positive, got {self.ttl}")

    @property
    def lease_duration(self) -> float:
        return self.ttl

    @property
    def renew_deadline(self) -> float:
        """How long a leader keeps retrying one renewal before giving up."""
        return self.ttl / 2

    @property
    def retry_period(self) -> float:
        """Interval between acquire attempts and between renewals."""
        return self.ttl / 4
