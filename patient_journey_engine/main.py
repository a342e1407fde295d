"""
CLI entry point for the Patient Journey Engine.
"""

import asyncio
import click
import functools
import httpx
import json
import sys
from typing import Any, Dict, Optional

from .config import Settings
from .client import JourneyApiClient
from .core import JourneyEngine, JourneyService, NodeExecutor, validate_journey
from .models import JourneyRun, RunStatus
from .storage import InMemoryJourneyStore, InMemoryRunStore
from .utils import (
    JourneyEngineError,
    PermanentError,
    ProgressLogger,
    TransientError,
    configure_logging,
)

STATUS_ICONS = {
    'completed': '✅',
    'in_progress': '🔄',
    'failed': '❌'
}


def _load_json(path: str) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}")


def _client(ctx: click.Context) -> JourneyApiClient:
    settings: Settings = ctx.obj['settings']
    return JourneyApiClient(ctx.obj['api_url'], timeout=settings.request_timeout_seconds)


def api_command(func):
    """Report API failures as a CLI error instead of a traceback."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermanentError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
        except (TransientError, httpx.HTTPError) as e:
            click.echo(f"❌ Journey API unavailable: {e}", err=True)
            sys.exit(1)
    return wrapper


def _echo_run(run: Dict[str, Any]) -> None:
    status = run.get('status')
    click.echo(f"\n{STATUS_ICONS.get(status, '❓')} Run: {run.get('runId')}")
    click.echo(f"  Journey: {run.get('journeyId')}")
    click.echo(f"  Status: {status}")
    click.echo(f"  Current node: {run.get('currentNodeId')}")
    click.echo(f"  Patient: {run.get('patientContext', {}).get('id')}")
    click.echo(f"  Created: {run.get('createdAt')}")
    click.echo(f"  Updated: {run.get('updatedAt')}")
    click.echo(f"  Completed: {run.get('completedAt')}")


@click.group()
@click.version_option(version='1.0.0')
@click.option('--api-url', default=None, help='Journey API base URL (client commands)')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), default=None)
@click.option('--json-logs', is_flag=True, help='Output logs as JSON (for production)')
@click.pass_context
def cli(ctx: click.Context, api_url: Optional[str], log_level: Optional[str], json_logs: bool):
    """
    Patient Journey Engine

    Runs MESSAGE / DELAY / CONDITIONAL patient care journeys with durable,
    resumable progress.
    """
    settings = Settings()
    if log_level:
        settings.log_level = log_level
    if json_logs:
        settings.json_logs = True

    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings
    ctx.obj['api_url'] = (api_url or settings.api_url).rstrip('/')


@cli.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', default=None, type=int, help='Bind port')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the journey API server."""
    import uvicorn
    from .api import create_app

    settings: Settings = ctx.obj['settings']
    configure_logging(
        log_level=settings.log_level,
        log_file=settings.log_file,
        json_logs=settings.json_logs
    )

    host = host or settings.host
    port = port or settings.port
    click.echo(f"🚀 Patient Journey Engine on http://{host}:{port}")
    click.echo(f"📖 API documentation: http://{host}:{port}/docs")

    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@cli.command()
@click.argument('journey_file', type=click.Path(exists=True, dir_okay=False))
def validate(journey_file: str):
    """Check a journey definition without submitting it."""
    error = validate_journey(_load_json(journey_file))
    if error:
        click.echo(f"❌ Invalid journey: {error}", err=True)
        sys.exit(1)
    click.echo("✅ Journey is valid")


@cli.command()
@click.argument('journey_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--patient', '-p', 'patient_file', required=True,
              type=click.Path(exists=True, dir_okay=False), help='Patient context JSON file')
@click.option('--max-steps', type=click.IntRange(min=1), default=None,
              help='Fail the run after this many node executions')
@click.option('--timeout', type=float, default=None, help='Give up waiting after this many seconds')
@click.pass_context
def simulate(ctx: click.Context, journey_file: str, patient_file: str, max_steps: Optional[int], timeout: Optional[float]):
    """
    Run a journey in-process against a patient, printing each step.

    Nothing is persisted; delays really wait.

    \b
    Examples:
        pj-engine simulate journey.json --patient patient.json
    """
    settings: Settings = ctx.obj['settings']
    configure_logging(log_level="WARNING", json_logs=settings.json_logs)

    try:
        run = asyncio.run(_simulate(
            _load_json(journey_file),
            _load_json(patient_file),
            max_steps or settings.max_steps_per_run,
            timeout
        ))
    except JourneyEngineError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    _echo_run(run.to_status_dict())
    if not run.is_terminal:
        click.echo(f"⏱️  Gave up after {timeout}s, run still at node {run.current_node_id}", err=True)
    if run.status != RunStatus.COMPLETED:
        sys.exit(1)


async def _simulate(
    journey: Any,
    patient: Any,
    max_steps: Optional[int],
    timeout: Optional[float]
) -> JourneyRun:
    journey_store, run_store = InMemoryJourneyStore(), InMemoryRunStore()
    progress = ProgressLogger(echo=True)
    engine = JourneyEngine(
        journey_store,
        run_store,
        executor=NodeExecutor(progress=progress),
        progress=progress,
        max_steps_per_run=max_steps
    )
    service = JourneyService(journey_store, run_store, engine)

    created = await service.submit_journey(journey)
    run_id = await service.trigger(created.id, patient)
    try:
        return await engine.wait_for_run(run_id, timeout=timeout)
    finally:
        await engine.shutdown()


@cli.command()
@click.argument('journey_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@api_command
def submit(ctx: click.Context, journey_file: str):
    """Submit a journey definition to the API."""
    with _client(ctx) as client:
        journey_id = client.submit_journey(_load_json(journey_file))
    click.echo(f"✅ Journey created: {journey_id}")


@cli.command()
@click.argument('journey_id')
@click.option('--patient', '-p', 'patient_file', required=True,
              type=click.Path(exists=True, dir_okay=False), help='Patient context JSON file')
@click.pass_context
@api_command
def trigger(ctx: click.Context, journey_id: str, patient_file: str):
    """Start a journey run for a patient."""
    with _client(ctx) as client:
        run_id = client.trigger(journey_id, _load_json(patient_file))
    click.echo(f"🔄 Run started: {run_id}")


@cli.command()
@click.argument('run_id')
@click.pass_context
@api_command
def status(ctx: click.Context, run_id: str):
    """Show the status of a journey run."""
    with _client(ctx) as client:
        run = client.get_run(run_id)
    _echo_run(run)


@cli.command()
@click.argument('run_id')
@click.pass_context
@api_command
def cancel(ctx: click.Context, run_id: str):
    """Cancel a journey run."""
    with _client(ctx) as client:
        run = client.cancel_run(run_id)
    _echo_run(run)


@cli.command()
@click.pass_context
@api_command
def journeys(ctx: click.Context):
    """List stored journeys."""
    with _client(ctx) as client:
        items = client.list_journeys()

    if not items:
        click.echo("No journeys found.")
        return

    click.echo(f"\n📋 Journeys ({len(items)}):\n")
    for journey in items:
        click.echo(f"  • {journey['name']}")
        click.echo(f"     id: {journey['id']}")
        click.echo(f"     start: {journey['start_node_id']}, nodes: {len(journey['nodes'])}")
        click.echo()


@cli.command()
@click.option('--status', 'run_status', type=click.Choice([s.value for s in RunStatus]),
              default=RunStatus.IN_PROGRESS.value, help='Run status to list')
@click.pass_context
@api_command
def runs(ctx: click.Context, run_status: str):
    """List journey runs by status."""
    with _client(ctx) as client:
        items = client.list_runs(run_status)

    if not items:
        click.echo(f"No {run_status} runs.")
        return

    click.echo(f"\n📋 Runs ({len(items)}):\n")
    for run in items:
        click.echo(f"  {STATUS_ICONS.get(run['status'], '❓')} {run['runId']}")
        click.echo(f"     journey {run['journeyId']} at {run['currentNodeId']}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
