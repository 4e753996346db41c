import asyncio
import json
import logging
from pathlib import Path

import httpx
import typer

from dispatchkit.ledger.sqlite import SQLiteAssignmentLedger
from dispatchkit.settings import settings
from dispatchkit.utils.logging import setup_logging

app = typer.Typer(help="dispatchkit control interface")

DB_OPTION = typer.Option(Path(settings.SQLITE_PATH), "--db", help="Path to the SQLite ledger")


def _with_ledger(db: Path, action):
    if not db.exists():
        typer.echo(f"Error: ledger {db} does not exist.")
        raise typer.Exit(code=1)

    async def _run():
        ledger = SQLiteAssignmentLedger(str(db))
        await ledger.start()
        try:
            return await action(ledger)
        finally:
            await ledger.stop()

    return asyncio.run(_run())


def _echo_assignment(assignment) -> None:
    typer.echo(json.dumps(assignment.model_dump(mode="json"), indent=2))


@app.command()
def offers(courier_id: str, db: Path = DB_OPTION):
    """
    Lists open broadcasts offered to a courier.
    """
    found = _with_ledger(db, lambda ledger: ledger.find_active_for_courier(courier_id))
    if not found:
        typer.echo(f"No open offers for {courier_id}.")
        return
    for assignment in found:
        typer.echo(f"{assignment.id} | order {assignment.order_id} | line {assignment.shop_order_id} "
                   f"| {len(assignment.candidates)} candidates")


@app.command()
def current(courier_id: str, db: Path = DB_OPTION):
    """
    Shows the assignment a courier has accepted, if any.
    """
    assignment = _with_ledger(db, lambda ledger: ledger.find_accepted_for_courier(courier_id))
    if assignment is None:
        typer.echo(f"{courier_id} has no accepted assignment.")
        raise typer.Exit(code=1)
    _echo_assignment(assignment)


@app.command()
def show(assignment_id: str, db: Path = DB_OPTION):
    """
    Prints one assignment record.
    """
    assignment = _with_ledger(db, lambda ledger: ledger.get(assignment_id))
    if assignment is None:
        typer.echo(f"Assignment {assignment_id} not found.")
        raise typer.Exit(code=1)
    _echo_assignment(assignment)


@app.command()
def status(url: str = typer.Option(f"http://localhost:{settings.ADMIN_PORT}", help="URL of the Admin API")):
    """
    Checks that an engine's admin API is up.
    """
    try:
        r = httpx.get(f"{url}/health")
        if r.status_code == 200:
            typer.echo(f"Engine online: {r.json()}")
        else:
            typer.echo(f"Engine returned {r.status_code}: {r.text}")
            raise typer.Exit(code=1)
    except httpx.RequestError as e:
        typer.echo(f"Failed to connect to {url}: {e}")
        raise typer.Exit(code=1)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")):
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


if __name__ == "__main__":
    app()
