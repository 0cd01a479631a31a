"""
Command line entry point for running registrations locally.
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from pydantic import ValidationError as PayloadValidationError
from rich.console import Console
from rich.table import Table

from .bootstrap import ServiceTopology, build_topology, configure_observability
from .config import ConfigurationError, Environment, ServiceConfig, create_service_config
from .models import RegistrationRequest
from .workflow.outcome import OutcomeStatus, WorkflowOutcome

console = Console()

STATUS_STYLES = {
    OutcomeStatus.SUCCEEDED: "bold green",
    OutcomeStatus.PARTIALLY_SUCCEEDED: "bold yellow",
    OutcomeStatus.FAILED: "bold red",
}


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Directory holding base.yaml, <environment>.yaml and services/",
)
@click.option(
    "--environment",
    type=click.Choice([env.value for env in Environment]),
    default=None,
    help="Configuration environment (defaults to $SERVICE_ENV)",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, environment: str | None, log_level: str | None):
    """Customer registration service."""
    try:
        config = create_service_config(environment=environment, config_path=config_dir)
        if log_level:
            config.logging.level = log_level
        config.validate()
    except ConfigurationError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    configure_observability(config, stream=sys.stderr)
    ctx.obj = config


@cli.command()
@click.argument("payload_file", type=click.File("rb"))
@click.option(
    "--archive-policy",
    type=click.Choice(["degrade", "fail"]),
    default=None,
    help="What an archive failure does to the workflow",
)
@click.option("--execution-id", default=None, help="Execution id to use as causation id")
@click.option(
    "--output",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_obj
def register(
    config: ServiceConfig,
    payload_file,
    archive_policy: str | None,
    execution_id: str | None,
    output: str,
):
    """Run the registration workflow for the JSON payload in PAYLOAD_FILE."""
    body = payload_file.read()
    try:
        request = RegistrationRequest.from_json(body)
    except PayloadValidationError as e:
        raise click.ClickException(f"Invalid registration payload: {e}") from e

    if archive_policy:
        config.workflow.archive_failure_policy = archive_policy

    topology = build_topology(config)
    outcome = asyncio.run(topology.register(request, execution_id=execution_id))

    if output == "json":
        click.echo(json.dumps(outcome.to_dict(), indent=2))
    else:
        _show_outcome(outcome, topology)

    if outcome.failed:
        sys.exit(1)


@cli.command()
@click.pass_obj
def routes(config: ServiceConfig):
    """Show the routing rules the service would install."""
    topology = build_topology(config)

    table = Table(title="Routing Rules")
    table.add_column("Rule", style="cyan")
    table.add_column("Listens On", style="blue")
    table.add_column("Source / Detail Type")
    table.add_column("Targets", style="green")

    for rule in topology.router.rules:
        table.add_row(
            rule.name,
            rule.listen_bus,
            f"{rule.match_source} / {rule.match_detail_type}",
            ", ".join(f"{target.kind}:{target.name}" for target in rule.targets),
        )

    console.print(table)
    console.print(f"Max hops: {topology.router.max_hops}")


def _show_outcome(outcome: WorkflowOutcome, topology: ServiceTopology) -> None:
    console.print(f"Outcome: {outcome.status.value}", style=STATUS_STYLES[outcome.status])
    console.print(f"Execution: {outcome.execution_id}")
    if outcome.failed_step is not None and outcome.reason is not None:
        console.print(
            f"Failed step: {outcome.failed_step.value} ({outcome.reason.error_type})",
            style="red",
        )

    table = Table(title="Workflow Steps")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for step in outcome.steps:
        table.add_row(step.name.value, step.status.value, step.error.message if step.error else "")
    console.print(table)

    stats = topology.queue.stats()
    console.print(
        f"Queue {stats.name}: {stats.ready} ready, {stats.in_flight} in flight, "
        f"{stats.dead_lettered} dead-lettered"
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
