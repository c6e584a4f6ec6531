"""Health check endpoints for an election participant.

Provides Kubernetes-compatible liveness and readiness probes:
- /health/live   - Liveness probe (always returns OK if process is running)
- /health/ready  - Readiness probe (OK while the election loop is running)
- /health/leader - Current cycle, leadership state, and observed leader
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from revlead.election import LeaderElection

router = APIRouter(tags=["health"])


def _election(request: Request) -> LeaderElection:
    election: LeaderElection = request.app.state.election
    return election


@router.get("/health/live")
async def live() -> dict[str, str]:
    """Liveness probe.

    Returns OK if the process is running. Used by Kubernetes
    to determine if the container should be restarted.
    """
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness probe.

    Returns 200 while the election loop is running, 503 before it starts
    and after it stops. Followers are ready too: readiness does not depend
    on holding the lease.
    """
    election = _election(request)
    running = election.running
    return JSONResponse(
        content={"status": "ready" if running else "not_ready", "cycle": election.cycle},
        status_code=200 if running else 503,
    )


@router.get("/health/leader")
async def leader(request: Request) -> dict[str, Any]:
    """Leadership state of this instance."""
    election = _election(request)
    identity = election.identity
    return {
        "election_id": identity.election_id,
        "namespace": identity.namespace,
        "identity": identity.name,
        "revision": identity.revision,
        "is_leader": election.is_leader,
        "cycle": election.cycle,
        "leader": election.leader_identity,
    }
