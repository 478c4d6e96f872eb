"""
CLI interface for FlowBatch Core
"""
import asyncio
import click
import json
import logging
import sys
import os
import uvicorn
from pathlib import Path
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from config import Config
from src.core.bootstrap import get_container
from src.core.errors import ConcurrentRunError, GraphIntegrityError
from src.core.execution.records import ExecutionOptions
from src.core.graph import WorkflowGraph
from src.core.types import RunStatus, StepStatus
from src.utils.logger import set_level

console = Console(force_terminal=True)


def _load_json(path: str) -> dict:
    with open(path, 'r') as f:
        return json.load(f)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose):
    """FlowBatch Core - workflow execution engine"""
    if verbose:
        set_level(logging.DEBUG)


@cli.command()
@click.option('--port', default=None, type=int, help='Port to run the API server on')
@click.option('--mode', type=click.Choice(['solo', 'prod']), default=None, help='Mode: solo or prod')
@click.option('--host', default=None, help='Host to bind to')
def serve(port, mode, host):
    """Run the API server"""
    if mode:
        os.environ['FLOWBATCH_MODE'] = mode
        Config.MODE = mode

    if not Config.validate():
        click.echo("❌ Configuration validation failed. Please check your environment variables.")
        sys.exit(1)

    host = host or Config.API_HOST
    port = port or Config.API_PORT
    click.echo(f"🚀 Starting FlowBatch Core API server in {Config.MODE} mode...")
    click.echo(f"   Host: {host}")
    click.echo(f"   Port: {port}")

    from src.api.server import app
    uvicorn.run(app, host=host, port=port)


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--start', 'start_node_id', default=None, help='Node id to start from')
@click.option('--parallel/--sequential', default=None, help='Override the workflow parallel_mode setting')
@click.option('--batch-size', type=int, default=None, help='Override the workflow batch_size setting')
@click.option('--payload', 'payload_file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='JSON file with the trigger payload {body, headers}')
def run(workflow_file, start_node_id, parallel, batch_size, payload_file):
    """Run a workflow document"""
    try:
        graph = WorkflowGraph.from_document(_load_json(workflow_file))
    except (ValueError, KeyError) as e:
        click.echo(f"❌ Invalid workflow: {e}")
        sys.exit(1)

    options = ExecutionOptions.from_settings(graph.settings)
    if parallel is not None:
        options.parallel = parallel
    if batch_size is not None:
        options.batch_size = max(1, batch_size)
    payload = _load_json(payload_file) if payload_file else None

    container = get_container()
    try:
        result = asyncio.run(container.engine.execute(
            graph,
            start_node_id=start_node_id,
            mode=options,
            trigger_payload=payload,
        ))
    except (ConcurrentRunError, GraphIntegrityError) as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")
    for index, step in enumerate(result.steps, 1):
        ok = step.status == StepStatus.COMPLETED
        detail = json.dumps(step.result, default=str)[:120] if ok else (step.error or '')
        table.add_row(
            str(index),
            step.node_label,
            "[green]completed[/green]" if ok else "[red]error[/red]",
            f"{step.duration:.2f}s",
            detail,
        )

    style = "green" if result.status == RunStatus.COMPLETED else "red"
    console.print(Panel(
        table,
        title=f"[bold]{graph.name or graph.id}[/bold]",
        subtitle=f"[{style}]{result.status.value}[/{style}] · run {result.id}",
        border_style=style,
    ))
    if result.error_message:
        console.print(f"[red]Error:[/red] {result.error_message}")
    if result.status != RunStatus.COMPLETED:
        sys.exit(1)


@cli.command()
@click.argument('workflow_id')
@click.option('--limit', default=None, type=int, help='Maximum number of runs to show')
def history(workflow_id, limit):
    """List recent runs of a workflow"""
    container = get_container()
    runs = container.history.list_runs(workflow_id, limit=limit or Config.HISTORY_LIMIT)
    if not runs:
        click.echo(f"ℹ️  No runs found for workflow {workflow_id}")
        return

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("Run")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Error", overflow="fold")
    colors = {RunStatus.COMPLETED: "green", RunStatus.FAILED: "red", RunStatus.RUNNING: "yellow"}
    for item in runs:
        color = colors[item.status]
        table.add_row(
            item.id,
            item.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{color}]{item.status.value}[/{color}]",
            str(len(item.steps)),
            item.error_message or '',
        )
    console.print(table)


@cli.command()
@click.option('--minutes', default=None, type=float, help='Age after which a running run is considered stale')
def cleanup(minutes):
    """Mark stale running runs as failed"""
    container = get_container()
    cleaned = container.history.cleanup_stale(minutes or Config.STALE_RUN_MINUTES)
    click.echo(f"✅ Marked {len(cleaned)} stale run(s) as failed")
    for run_id in cleaned:
        click.echo(f"   {run_id}")


@cli.command()
def config():
    """Show current configuration"""
    click.echo("Configuration:")
    click.echo(f"   Mode: {Config.MODE}")
    click.echo(f"   Storage Path: {Config.STORAGE_PATH}")
    click.echo(f"   API Host: {Config.API_HOST}")
    click.echo(f"   API Port: {Config.API_PORT}")
    click.echo(f"   Default Batch Size: {Config.DEFAULT_BATCH_SIZE}")
    click.echo(f"   Status Reset Delay: {Config.STATUS_RESET_DELAY}s")

    if Config.MODE == 'prod':
        click.echo(f"   Supabase URL: {Config.SUPABASE_URL[:50]}..." if Config.SUPABASE_URL else "   Supabase URL: Not set")
        click.echo(f"   Supabase Key: {'Set' if Config.SUPABASE_KEY else 'Not set'}")

    click.echo(f"   OpenAI API Key: {'Set' if Config.OPENAI_API_KEY else 'Not set'}")
    click.echo(f"   OpenAI API Base: {Config.OPENAI_API_BASE}")
    if not Path(Config.STORAGE_PATH).exists() and Config.MODE == 'solo':
        click.echo("   (storage path will be created on first use)")


if __name__ == '__main__':
    cli()
