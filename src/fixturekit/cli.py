"""Command-line interface for running fixtures outside a test framework.

Commands:

- `fixturekit up DEFINITION`: provision the fixture, print its endpoint and
  connection string, keep it running until interrupted (Ctrl-C or SIGTERM),
  then tear it down.
- `fixturekit check DEFINITION`: set the fixture up and tear it down again.
  Exits 0 when the fixture became ready and 75 on an infrastructure failure,
  which makes it a cheap pre-flight check in CI.
"""

import logging
import signal
import threading
from pathlib import Path
from typing import Annotated

import typer

from fixturekit.config import get_settings
from fixturekit.core.broker import SharedFixtureBroker
from fixturekit.core.exceptions import InfrastructureError
from fixturekit.core.loader import DefinitionError, load_definition
from fixturekit.foundation.logger import configure_logging
from fixturekit.pytest_plugin import INFRASTRUCTURE_FAILURE_EXIT_CODE

logger = logging.getLogger(__name__)

app = typer.Typer(pretty_exceptions_enable=False, help="Disposable test fixture lifecycle manager.")

DefinitionArg = Annotated[Path, typer.Argument(help="YAML fixture definition", exists=True, dir_okay=False)]


def _broker(definition: Path) -> SharedFixtureBroker:
    settings = get_settings()
    configure_logging(level=settings.logging.level, json_format=settings.logging.json_format)
    try:
        plan = load_definition(definition)
    except DefinitionError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2) from e
    return SharedFixtureBroker.from_plan(plan, settings=settings)


def _interrupt(signum: int, frame: object) -> None:
    raise KeyboardInterrupt


@app.command()
def up(definition: DefinitionArg) -> None:
    """Start a fixture and keep it running until Ctrl-C or SIGTERM."""
    broker = _broker(definition)
    try:
        handle = broker.setup()
    except InfrastructureError as e:
        typer.echo(f"Infrastructure failure: {e}", err=True)
        raise typer.Exit(code=INFRASTRUCTURE_FAILURE_EXIT_CODE) from e

    typer.echo(f"{handle.fixture_name} ready on {handle.endpoint.address}")
    typer.echo(handle.connection_string)
    previous_handler = signal.signal(signal.SIGTERM, _interrupt)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    finally:
        signal.signal(signal.SIGTERM, previous_handler)
        broker.teardown()


@app.command()
def check(definition: DefinitionArg) -> None:
    """Verify a fixture can be provisioned and becomes ready."""
    broker = _broker(definition)
    try:
        handle = broker.setup()
    except InfrastructureError as e:
        typer.echo(f"FAILED: {e}", err=True)
        raise typer.Exit(code=INFRASTRUCTURE_FAILURE_EXIT_CODE) from e
    try:
        typer.echo(f"OK: {handle.fixture_name} ready on {handle.endpoint.address}")
    finally:
        broker.teardown()


if __name__ == "__main__":
    app()
