#!/usr/bin/env python
"""
CLI management commands for the metering engine.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import click
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wablast.metering.billing.exceptions import MeteringError
from wablast.metering.billing.ledger import TokenLedger
from wablast.metering.billing.pricing import PricingResolver, PricingService
from wablast.metering.billing.purchases import PurchaseService
from wablast.metering.db import check_database_health, create_all_tables_async, get_session_maker
from wablast.metering.logging import setup_logging


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: async_sessionmaker[AsyncSession]
    init_db: Callable[[], Awaitable[None]]
    check_health: Callable[[], Awaitable[bool]]
    subprocess_run: Callable[..., Any]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    import subprocess

    return CLIDependencies(
        session_factory=get_session_maker(),
        init_db=create_all_tables_async,
        check_health=check_database_health,
        subprocess_run=subprocess.run,
    )


def _run(coro: Awaitable[Any]) -> Any:
    """Run a command coroutine, turning metering errors into CLI errors."""

    async def _wrapped() -> Any:
        try:
            return await coro
        except MeteringError as e:
            raise click.ClickException(e.message) from e

    return asyncio.run(_wrapped())


@click.group()
def cli() -> None:
    """WA Blast metering engine CLI."""
    setup_logging()


@cli.command()
def init_database() -> None:
    """Create the metering tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    _run(deps.init_db())
    click.echo("Database initialized successfully!")


@cli.command()
def run_migrations() -> None:
    """Run database migrations."""
    deps = _get_cli_dependencies()
    import sys

    click.echo("Running database migrations...")
    result = deps.subprocess_run(["alembic", "upgrade", "head"], capture_output=True, text=True)

    if result.returncode == 0:
        click.echo("Migrations completed successfully!")
        click.echo(result.stdout)
    else:
        click.echo("Migration failed!")
        click.echo(result.stderr)
        sys.exit(1)


@cli.command()
def check_database() -> None:
    """Check connectivity to the metering store."""
    deps = _get_cli_dependencies()
    healthy = _run(deps.check_health())
    click.echo(f"{'database':15} {'✓ Connected' if healthy else '✗ Unreachable'}")
    if not healthy:
        raise SystemExit(1)


@cli.command()
def seed_defaults() -> None:
    """Seed the default pricing config and token packages when absent."""
    deps = _get_cli_dependencies()

    async def _seed() -> None:
        async with deps.session_factory() as session:
            config = await PricingService(session).seed_default()
            created = await PurchaseService(session).seed_default_packages()
        click.echo(
            f"Default pricing: divisor={config.divisor} markup={config.markup} "
            f"min_tokens={config.min_tokens}"
        )
        click.echo(f"Token packages created: {created}")

    _run(_seed())


@cli.command()
@click.argument("key")
@click.option("--divisor", type=int, required=True, help="Raw units per charged token")
@click.option("--markup", default="1.0", help="Multiplier applied after division")
@click.option("--min-tokens", default="0.01", help="Minimum tokens charged per request")
@click.option("--description", default=None, help="Operator note")
@click.option("--inactive", is_flag=True, help="Store the config as inactive")
def set_pricing(
    key: str,
    divisor: int,
    markup: str,
    min_tokens: str,
    description: str | None,
    inactive: bool,
) -> None:
    """Create or replace the pricing config for KEY."""
    deps = _get_cli_dependencies()

    async def _set() -> None:
        async with deps.session_factory() as session:
            config = await PricingService(session).upsert_config(
                key,
                divisor=divisor,
                markup=markup,
                min_tokens=min_tokens,
                description=description,
                is_active=not inactive,
            )
        state = "active" if config.is_active else "inactive"
        click.echo(
            f"Pricing '{config.key}' saved ({state}): divisor={config.divisor} "
            f"markup={config.markup} min_tokens={config.min_tokens}"
        )

    _run(_set())


@cli.command()
@click.argument("key")
def deactivate_pricing(key: str) -> None:
    """Deactivate the pricing config for KEY."""
    deps = _get_cli_dependencies()

    async def _deactivate() -> None:
        async with deps.session_factory() as session:
            await PricingService(session).deactivate(key)
        click.echo(f"Pricing '{key}' deactivated")

    _run(_deactivate())


@cli.command()
@click.option("--raw-units", type=int, default=None, help="Also quote this raw unit count")
@click.option("--feature", default=None, help="Feature key for the quote")
def pricing_summary(raw_units: int | None, feature: str | None) -> None:
    """Show the pricing configs and example charges."""
    deps = _get_cli_dependencies()

    async def _summary() -> None:
        async with deps.session_factory() as session:
            summary = await PricingService(session).pricing_summary()

        if summary.default is None:
            click.echo("Default pricing: not configured")
        else:
            state = "" if summary.default.is_active else " (inactive)"
            click.echo(
                f"Default pricing{state}: divisor={summary.default.divisor} "
                f"markup={summary.default.markup} min_tokens={summary.default.min_tokens}"
            )
        for config in summary.features:
            state = "" if config.is_active else " (inactive)"
            click.echo(
                f"  {config.key}{state}: divisor={config.divisor} markup={config.markup} "
                f"min_tokens={config.min_tokens}"
            )
        for example in summary.examples:
            click.echo(f"  {example.raw_units:>6} raw units -> {example.charged} tokens")

        if raw_units is not None:
            resolver = PricingResolver(deps.session_factory)
            charged = await resolver.calculate_charge(feature, raw_units)
            click.echo(f"Quote: {raw_units} raw units of '{feature or 'default'}' -> {charged} tokens")

    _run(_summary())


@cli.command()
@click.argument("tenant_id")
def balance(tenant_id: str) -> None:
    """Show the token balance of TENANT_ID."""
    deps = _get_cli_dependencies()

    async def _balance() -> None:
        async with deps.session_factory() as session:
            summary = await TokenLedger(session).get_balance_summary(tenant_id)
        click.echo(f"Tenant:   {summary.tenant_id}")
        click.echo(f"Balance:  {summary.balance}")
        click.echo(f"Credited: {summary.total_credited}")
        click.echo(f"Used:     {summary.total_used}")

    _run(_balance())


@cli.command()
@click.argument("tenant_id")
@click.argument("amount")
@click.option("--reference", default=None, help="Idempotency key (defaults to a new one)")
@click.option("--reason", default="Manual grant", help="Reason recorded with the credit")
def grant_tokens(tenant_id: str, amount: str, reference: str | None, reason: str) -> None:
    """Credit AMOUNT tokens to TENANT_ID."""
    deps = _get_cli_dependencies()
    key = reference or f"admin-grant-{uuid4()}"

    async def _grant() -> None:
        async with deps.session_factory() as session:
            result = await TokenLedger(session).credit(
                tenant_id, amount, idempotency_key=key, reason=reason
            )
        if result.applied:
            click.echo(f"Granted {amount} tokens to {tenant_id}; balance {result.new_balance}")
        else:
            click.echo(f"Grant '{key}' already applied; balance {result.new_balance}")

    _run(_grant())


if __name__ == "__main__":
    cli()
