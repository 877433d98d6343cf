"""Click CLI for portal operations: reconciliation, audit and security events."""

from __future__ import annotations

import json
from pathlib import Path

import click
import uvicorn

from src.audit.logger import validate_audit_chain
from src.models import Product
from src.payments.reconciliation import ReconciliationLedger
from src.store.records import PortalStore


@click.group()
@click.option("--db", default="data/portal.db", envvar="PORTAL_DB_PATH",
              help="Portal database path.")
@click.pass_context
def cli(ctx: click.Context, db: str) -> None:
    """Client portal payment and security CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db


def _store(ctx: click.Context) -> PortalStore:
    store = PortalStore.open(ctx.obj["db_path"])
    ctx.call_on_close(store.close)
    return store


@cli.group("reconcile")
def reconcile_group() -> None:
    """Compare client-reported payments with webhook bookkeeping."""


@reconcile_group.command("pending")
@click.option("--older-than", default=300, show_default=True, type=int,
              help="Only list reports older than this many seconds.")
@click.pass_context
def reconcile_pending(ctx: click.Context, older_than: int) -> None:
    """List client-reported successes the webhook never confirmed."""
    ledger = ReconciliationLedger(_store(ctx))
    entries = ledger.pending(older_than_seconds=older_than)
    click.echo(json.dumps([e.model_dump() for e in entries], indent=2))


@cli.group("audit")
def audit_group() -> None:
    """Inspect the JSONL audit log."""


@audit_group.command("verify")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def audit_verify(log_path: Path) -> None:
    """Verify the hash chain of an audit log file."""
    result = validate_audit_chain(log_path)
    if result.valid:
        click.echo(f"OK: {result.entries} entries, chain intact")
        return
    click.echo(f"TAMPERED: chain broken at line {result.broken_at_line}", err=True)
    raise SystemExit(1)


@cli.group("events")
def events_group() -> None:
    """Query stored security events."""


@events_group.command("list")
@click.option("--user", "user_id", default=None, help="Filter by user id.")
@click.option("--limit", default=50, show_default=True, type=int)
@click.pass_context
def events_list(ctx: click.Context, user_id: str | None, limit: int) -> None:
    """List security events, newest first."""
    events = _store(ctx).list_security_events(user_id=user_id, limit=limit)
    click.echo(json.dumps([e.model_dump(mode="json") for e in events], indent=2))


@cli.group("products")
def products_group() -> None:
    """Manage the product catalog used by the payment webhook."""


@products_group.command("add")
@click.argument("product_id")
@click.argument("name")
@click.argument("price", type=float)
@click.pass_context
def products_add(ctx: click.Context, product_id: str, name: str, price: float) -> None:
    """Add or update a product."""
    _store(ctx).upsert_product(Product(id=product_id, name=name, price=price))
    click.echo(f"Product saved: {product_id}")


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the backend HTTP app; configuration comes from the environment."""
    uvicorn.run("src.api.app:create_app_from_env", factory=True, host=host, port=port)


if __name__ == "__main__":
    cli()
