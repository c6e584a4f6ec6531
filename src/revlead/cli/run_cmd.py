"""CLI command for joining a leader election.

Usage:
    revlead run --name pod-1 --revision v2
    revlead run --election-id scheduler --ttl 15 --health-port 8081
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

import typer

from revlead.config import settings

if TYPE_CHECKING:
    import uvicorn

app = typer.Typer(help="Join a leader election backed by Redis")

logger = logging.getLogger("revlead.cli")


async def announce_term(stop: asyncio.Event) -> None:
    """Run function that only reports the span of each leadership term."""
    logger.info("Leadership term started")
    await stop.wait()
    logger.info("Leadership term ended")


async def _serve_health(server: uvicorn.Server, stop: asyncio.Event) -> None:
    serving = asyncio.create_task(server.serve())
    await stop.wait()
    server.should_exit = True
    await serving


async def _run(
    namespace: str,
    election_id: str,
    name: str,
    revision: str,
    ttl: float,
    redis_url: str,
    health_port: int,
) -> None:
    from revlead.election import LeaderElection
    from revlead.identity import IdentityConfig
    from revlead.redis import close_redis, get_redis
    from revlead.revisions import RedisDefaultWatcher
    from revlead.store.redis import RedisLockStore

    identity = IdentityConfig(
        namespace=namespace, name=name, election_id=election_id, revision=revision, ttl=ttl
    )
    client = await get_redis(redis_url)
    watcher = RedisDefaultWatcher(
        client, settings.default_revision_key, settings.default_revision_poll_interval
    )
    await watcher.refresh()

    election = LeaderElection(
        identity,
        RedisLockStore(client, settings.key_prefix),
        oracle=watcher,
        backoff=settings.backoff,
    )
    election.add_run_function(announce_term)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    tasks = [election.run(stop), watcher.run(stop)]
    if health_port:
        import uvicorn

        from revlead.api import create_app

        server = uvicorn.Server(
            uvicorn.Config(
                create_app(election),
                host=settings.health_host,
                port=health_port,
                log_level=settings.log_level.lower(),
            )
        )
        tasks.append(_serve_health(server, stop))

    try:
        await asyncio.gather(*tasks)
    finally:
        await close_redis()


@app.callback(invoke_without_command=True)
def run(
    namespace: str = typer.Option(settings.namespace, "--namespace", "-n", help="Lock namespace"),
    election_id: str = typer.Option(
        settings.election_id, "--election-id", "-e", help="Lock key shared by all contenders"
    ),
    name: str = typer.Option(
        settings.instance_name, "--name", help="Holder identity of this instance"
    ),
    revision: str = typer.Option(
        settings.revision, "--revision", "-r", help="Software revision of this instance"
    ),
    ttl: float = typer.Option(settings.lease_ttl, "--ttl", help="Lease duration in seconds"),
    redis_url: str = typer.Option(settings.redis_url, "--redis-url", help="Redis URL"),
    health_port: int = typer.Option(
        settings.health_port, "--health-port", help="Serve health probes on this port (0 = off)"
    ),
) -> None:
    """Contend for leadership until interrupted."""
    from revlead.observability.logging import configure_logging

    configure_logging(json_format=settings.log_json, level=settings.log_level)

    typer.echo(f"Joining election {namespace}/{election_id} as {name} (revision '{revision}')")
    asyncio.run(_run(namespace, election_id, name, revision, ttl, redis_url, health_port))
