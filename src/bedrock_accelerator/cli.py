"""Typer CLI for the Bedrock accelerator deployment."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bedrock_accelerator.config.loader import load_config
from bedrock_accelerator.config.models import AcceleratorConfig
from bedrock_accelerator.deployment import Deployment, plan_deployment
from bedrock_accelerator.errors import ProvisioningError
from bedrock_accelerator.observability.logging import configure_logging
from bedrock_accelerator.provisioning.outputs import RunResult
from bedrock_accelerator.provisioning.state import ResourceState

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="bedrock-accelerator", help="Bedrock endpoint accelerator CLI")

DEFAULT_ENV_FILE = ".env"

_STATE_STYLES = {
    ResourceState.READY: "green",
    ResourceState.FAILED: "red",
    ResourceState.PENDING: "dim",
}


def _load(config_path: str | None, env_file: str | None) -> AcceleratorConfig:
    if config_path is None and env_file is None and Path(DEFAULT_ENV_FILE).exists():
        env_file = DEFAULT_ENV_FILE
    if config_path is not None and not Path(config_path).exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(1)
    try:
        return load_config(config_path, env_file=env_file)
    except (ValueError, TypeError, FileNotFoundError) as exc:
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


@app.callback()
def main(
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    configure_logging(json=json_logs, verbose=verbose)


@app.command()
def validate(
    config_path: str | None = typer.Option(None, "--config", help="Deployment YAML"),
    env_file: str | None = typer.Option(
        None, "--env-file", help=".env file (default: ./.env when present)"
    ),
) -> None:
    """Validate the deployment configuration."""
    config = _load(config_path, env_file)
    console.print(f"[green]Valid[/green] — vpc_id={config.vpc_id}")
    console.print(f"  region:  {config.region}")
    console.print(f"  subnets: {config.public_subnet_ids}")
    if len(config.public_subnet_ids) > 1:
        console.print(
            f"  [yellow]only {config.primary_subnet_id} is used for the endpoint "
            "and the NLB[/yellow]"
        )
    console.print(f"  nlb ingress: {config.nlb_security_group}")
    status = "enabled" if config.enable_global_accelerator else "disabled"
    console.print(f"  global accelerator: {status}")


@app.command()
def plan(
    config_path: str | None = typer.Option(None, "--config", help="Deployment YAML"),
    env_file: str | None = typer.Option(
        None, "--env-file", help=".env file (default: ./.env when present)"
    ),
) -> None:
    """Print the resource creation order without touching AWS."""
    config = _load(config_path, env_file)
    try:
        deployment_plan = plan_deployment(config)
    except ProvisioningError as exc:
        console.print(f"[red]Invalid resource graph:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    table = Table(title="Execution Plan")
    table.add_column("#", justify="right")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Depends on")
    table.add_column("Stage")

    stages = [("primary", deployment_plan.primary)]
    if deployment_plan.branch is not None:
        stages.append(("accelerator", deployment_plan.branch))
    position = 0
    for stage, stage_plan in stages:
        for descriptor in stage_plan:
            position += 1
            table.add_row(
                str(position),
                descriptor.id,
                str(descriptor.kind),
                ", ".join(sorted(descriptor.depends_on)) or "-",
                stage,
            )
    console.print(table)


def _print_result(result: RunResult) -> None:
    table = Table(title="Resources")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("State")
    table.add_column("Backend id")
    table.add_column("Detail")
    for r in result.reports:
        style = _STATE_STYLES.get(r.state, "yellow")
        table.add_row(
            r.resource_id,
            r.kind,
            f"[{style}]{r.state}[/{style}]",
            r.backend_id or "",
            escape(str(r.error)) if r.error else "",
        )
    console.print(table)

    if result.outputs:
        outputs = Table(title="Outputs")
        outputs.add_column("Name", style="cyan")
        outputs.add_column("Value")
        for name, value in result.outputs.items():
            outputs.add_row(name, str(value))
        console.print(outputs)


@app.command()
def deploy(
    config_path: str | None = typer.Option(None, "--config", help="Deployment YAML"),
    env_file: str | None = typer.Option(
        None, "--env-file", help=".env file (default: ./.env when present)"
    ),
    max_concurrency: int | None = typer.Option(
        None, "--max-concurrency", min=1, help="Resources created in parallel"
    ),
    outputs_file: str | None = typer.Option(
        None, "--outputs-file", help="Write outputs as JSON to this path"
    ),
) -> None:
    """Provision the endpoint, NLB and (optionally) the Global Accelerator."""
    config = _load(config_path, env_file)
    if max_concurrency is not None:
        config = config.model_copy(
            update={
                "executor": config.executor.model_copy(
                    update={"max_concurrency": max_concurrency}
                )
            }
        )

    from bedrock_accelerator.backends.aws import AwsBackend

    try:
        deployment = Deployment(config, AwsBackend(config.region))
    except ProvisioningError as exc:
        console.print(f"[red]Invalid resource graph:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    async def _deploy() -> RunResult:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        # First Ctrl-C stops new resources from starting; in-flight ones finish.
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        try:
            return await deployment.run(cancel)
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    console.print(f"[yellow]Deploying to {config.region}[/yellow]")
    result = asyncio.run(_deploy())
    _print_result(result)

    if outputs_file is not None:
        Path(outputs_file).write_text(json.dumps(result.outputs, indent=2) + "\n")
        console.print(f"Outputs written to {outputs_file}")

    failure = result.first_failure()
    if failure is None:
        console.print("[green]Deployment complete[/green]")
        return

    console.print(
        f"[red]Deployment failed at {failure.resource_id}:[/red] "
        f"{escape(str(failure.cause))}"
    )
    live = result.live_resources
    if live:
        console.print("[yellow]Resources left in place (clean up manually):[/yellow]")
        for resource_id, backend_id in live.items():
            console.print(f"  - {resource_id}: {backend_id}")
    raise typer.Exit(1)
