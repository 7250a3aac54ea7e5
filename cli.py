import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from donation_core.config import CREDENTIAL_ENV, OrchestratorSettings, get_settings
from donation_core.decorators import get_app, list_apps
from donation_core.errors import OrchestrationError, RecommendationError
from donation_core.facade import RecommendationService
from donation_core.fetcher import ResultFetcher
from donation_core.runtime import BaseMarketplace, RecommendationResult, TaskRequest, WalletSession

console = Console()
err_console = Console(stderr=True)


def get_backend(backend_name: str, settings: OrchestratorSettings) -> BaseMarketplace:
    if backend_name == "local":
        from donation_core.backends.local import LocalMarketplace
        secrets = {}
        if os.environ.get(CREDENTIAL_ENV):
            secrets[CREDENTIAL_ENV] = os.environ[CREDENTIAL_ENV]
        return LocalMarketplace(
            base_dir=settings.base_dir,
            max_workers=settings.local_workers,
            secrets=secrets,
        )
    elif backend_name == "http":
        from donation_core.backends.http import HttpMarketplace
        return HttpMarketplace(settings.marketplace_url, timeout_s=settings.marketplace_timeout_s)
    else:
        raise click.BadParameter(f"Unknown backend: {backend_name}")


def load_request(path: Path) -> TaskRequest:
    """Read a TaskRequest from a JSON file in the worker's input format."""
    try:
        return TaskRequest.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except ValueError as e:
        raise click.BadParameter(f"Invalid request file {path}: {e}")


def make_session(address: Optional[str], token: Optional[str], request: TaskRequest) -> WalletSession:
    return WalletSession(address=address or request.requester_address, token=token)


def print_result(result: RecommendationResult, title: str):
    if result.error:
        console.print(f"[red]Worker reported an error: {result.message}[/red]")
        return
    if not result.recommendations:
        console.print("[yellow]No recommendations returned.[/yellow]")
        return

    table = Table(title=title)
    table.add_column("NFT", style="cyan")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason")
    for rec in result.recommendations:
        table.add_row(rec.item_id, f"{rec.confidence}%", rec.reason)
    console.print(table)


backend_option = click.option(
    "--backend", default=None, help="Marketplace backend (local, http); defaults to settings"
)
address_option = click.option(
    "--address", envvar="DONATION_RECS_WALLET_ADDRESS", default=None,
    help="Wallet address of the requester (defaults to the request's userAddress)",
)
token_option = click.option(
    "--token", envvar="DONATION_RECS_SESSION_TOKEN", default=None,
    help="Signed wallet session token for the marketplace gateway",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Donation recommendations computed in a confidential-compute marketplace."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@cli.command()
def apps():
    """List registered worker apps."""
    import workloads  # noqa: F401  registers the bundled worker apps

    table = Table(title="Worker Apps")
    table.add_column("Name", style="cyan")
    table.add_column("Image")
    table.add_column("TEE")
    table.add_column("Entrypoint")
    for name in list_apps():
        image = get_app(name).image
        if image is None:
            table.add_row(name, "-", "-", "-")
        else:
            table.add_row(name, image.docker_image, image.tee_framework, image.entrypoint)
    console.print(table)


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@backend_option
@address_option
@token_option
def submit(request_file, backend, address, token):
    """Submit a recommendation task without waiting for it."""
    settings = get_settings()
    request = load_request(request_file)
    backend = backend or settings.backend
    marketplace = get_backend(backend, settings)

    try:
        service = RecommendationService(marketplace, settings)
        console.print(f"[yellow]Submitting task to [bold]{backend}[/bold] marketplace...[/yellow]")
        handle = service.submitter.submit(make_session(address, token, request), request)
        console.print(f"[green]Task submitted! Deal: [bold]{handle.deal_id}[/bold][/green]")
        console.print(f"[green]Task ID: [bold]{handle.task_id}[/bold][/green]")
    except OrchestrationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        # a local task only runs while this process is alive
        marketplace.close(wait=True)


@cli.command()
@click.argument("task_id")
@backend_option
def status(task_id, backend):
    """Check the status of a task."""
    settings = get_settings()
    marketplace = get_backend(backend or settings.backend, settings)
    try:
        task_status = marketplace.show_task(task_id)
    except OrchestrationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        marketplace.close()

    table = Table(title=f"Task Status: {task_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", task_status.state.value)
    if task_status.status_message:
        table.add_row("Message", task_status.status_message)
    console.print(table)


@cli.command()
@click.argument("task_id")
@backend_option
def fetch(task_id, backend):
    """Fetch and validate the result of a completed task."""
    settings = get_settings()
    marketplace = get_backend(backend or settings.backend, settings)
    try:
        result = ResultFetcher(marketplace).fetch(task_id)
    except OrchestrationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        marketplace.close()
    print_result(result, f"Recommendations for {task_id}")


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@backend_option
@address_option
@token_option
@click.option("--timeout", "-t", default=None, type=float, help="Seconds to wait for the task")
def recommend(request_file, backend, address, token, timeout):
    """
    Submit a task, wait for it and print the recommendations.

    Example:
        donation-recs recommend request.json --backend local -t 120
    """
    settings = get_settings()
    request = load_request(request_file)
    backend = backend or settings.backend
    marketplace = get_backend(backend, settings)
    cancel = threading.Event()

    try:
        service = RecommendationService(marketplace, settings)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Computing recommendations on {backend}...", total=None)
            result = service.get_recommendations(
                make_session(address, token, request),
                request,
                deadline=timeout,
                cancel=cancel,
            )
    except KeyboardInterrupt:
        cancel.set()
        console.print("[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except RecommendationError as e:
        console.print(f"[red]Failed to get recommendations: {e}[/red]")
        if e.retryable:
            console.print("[yellow]You can retry with the same request.[/yellow]")
        sys.exit(1)
    finally:
        marketplace.close(wait=False)

    if result is None:
        console.print("[yellow]Cancelled.[/yellow]")
        return
    print_result(result, f"Recommendations for {request.requester_address}")


@cli.command()
@backend_option
def estimate(backend):
    """Estimate the cost of one task in RLC."""
    settings = get_settings()
    marketplace = get_backend(backend or settings.backend, settings)
    try:
        cost = RecommendationService(marketplace, settings).estimate_task_cost()
    finally:
        marketplace.close()
    console.print(f"Estimated cost: [bold]{cost}[/bold] RLC")


@cli.command()
def worker():
    """Run the recommender worker once (what the enclave executes)."""
    from workloads.donation_recommender import main
    main()


if __name__ == "__main__":
    cli()
