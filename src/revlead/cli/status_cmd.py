"""CLI commands for inspecting and steering an election.

Usage:
    revlead status --election-id scheduler
    revlead set-default v2
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import typer

from revlead.config import settings

status_app = typer.Typer(help="Show the current lock record")
default_app = typer.Typer(help="Set the default revision")


async def _status(namespace: str, election_id: str, redis_url: str) -> None:
    from revlead.redis import close_redis, get_redis
    from revlead.store.redis import RedisLockStore

    client = await get_redis(redis_url)
    try:
        store = RedisLockStore(client, settings.key_prefix)
        current = await store.get(namespace, election_id)
        default = await client.get(settings.default_revision_key)
    finally:
        await close_redis()

    default_str = default.decode() if isinstance(default, bytes) else (default or "")
    typer.echo(f"Election:         {namespace}/{election_id}")
    typer.echo(f"Default revision: {default_str or '(none)'}")
    if current is None:
        typer.echo("Holder:           (none)")
        return

    record = current.record
    state = "expired" if record.is_expired(datetime.now(UTC)) else "live"
    typer.echo(f"Holder:           {record.holder_identity} ({state})")
    typer.echo(f"Holder revision:  {record.holder_revision or '(unversioned)'}")
    typer.echo(f"Renewed at:       {record.renew_time.isoformat()}")
    typer.echo(f"Lease duration:   {record.lease_duration}s")
    typer.echo(f"Transitions:      {record.leader_transitions}")


async def _set_default(revision: str, redis_url: str) -> None:
    from revlead.redis import close_redis, get_redis
    from revlead.revisions import RedisDefaultWatcher

    client = await get_redis(redis_url)
    try:
        await RedisDefaultWatcher(client, settings.default_revision_key).set_default(revision)
    finally:
        await close_redis()


@status_app.callback(invoke_without_command=True)
def status(
    namespace: str = typer.Option(settings.namespace, "--namespace", "-n", help="Lock namespace"),
    election_id: str = typer.Option(settings.election_id, "--election-id", "-e", help="Lock key"),
    redis_url: str = typer.Option(settings.redis_url, "--redis-url", help="Redis URL"),
) -> None:
    """Print the stored lock record and default revision."""
    asyncio.run(_status(namespace, election_id, redis_url))


@default_app.callback(invoke_without_command=True)
def set_default(
    revision: str = typer.Argument(..., help="Revision leadership should converge on"),
    redis_url: str = typer.Option(settings.redis_url, "--redis-url", help="Redis URL"),
) -> None:
    """Designate the default revision for every watcher of the key."""
    asyncio.run(_set_default(revision, redis_url))
    typer.echo(f"Default revision set to '{revision}'")
