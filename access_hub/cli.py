import asyncio
import json
import logging
import uuid

import click

from access_hub.config import settings
from access_hub.database import AsyncSessionLocal, engine
from access_hub.services.capacity_service import CapacityService
from access_hub.services.expiration_sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


async def _sweep(maintenance: bool, reason: str) -> dict:
    try:
        async with AsyncSessionLocal() as db:
            summary = await ExpirationSweeper.run_guarded(db, maintenance=maintenance, reason=reason)
        return summary.__dict__
    finally:
        await engine.dispose()


async def _reconcile(plan_id: uuid.UUID | None) -> dict:
    try:
        async with AsyncSessionLocal() as db:
            if plan_id is None:
                return await CapacityService.reconcile_all(db)
            return {str(plan_id): await CapacityService.reconcile(db, plan_id)}
    finally:
        await engine.dispose()


def _echo_summary(summary: dict) -> None:
    click.echo(json.dumps(summary, indent=2, default=str))
    if summary.get("errors"):
        raise SystemExit(1)


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run.")
def cli(log_level: str | None) -> None:
    """Access Hub operational commands."""
    logging.basicConfig(level=(log_level or settings.LOG_LEVEL).upper())


@cli.command()
def sweep() -> None:
    """Run one expiring-soon / just-expired sweep."""
    _echo_summary(asyncio.run(_sweep(maintenance=False, reason="cli")))


@cli.command()
def maintenance() -> None:
    """Expire every overdue subscription and reconcile plan capacity."""
    _echo_summary(asyncio.run(_sweep(maintenance=True, reason="cli_maintenance")))


@cli.command()
@click.option("--plan-id", type=click.UUID, default=None, help="Reconcile one plan only.")
def reconcile(plan_id: uuid.UUID | None) -> None:
    """Rebuild current capacity from the access log."""
    click.echo(json.dumps(asyncio.run(_reconcile(plan_id)), indent=2))


@cli.command()
def seed() -> None:
    """Create the system plan catalog and the initial administrator."""
    from access_hub.initial_data import seed_data

    asyncio.run(seed_data())


def maintenance_main() -> None:
    """Entry point for ``access-hub-maintenance``."""
    cli(["maintenance"])


if __name__ == "__main__":
    cli()
