"""DocGraph CLI entry point."""

import json
from pathlib import Path

import typer
from rich.console import Console

from docgraph.config import ConfigurationError, configure_logging, get_storage_dir, load_config
from docgraph.errors import DocGraphError
from docgraph.health_check import get_health_status
from docgraph.service import DocGraph, open_graph

from . import __version__
from .console import (
    create_table,
    print_error,
    print_info,
    print_panel,
    print_success,
    print_warning,
    styled_status,
)

app = typer.Typer(
    name="docgraph",
    help="DocGraph - documentation tooling knowledge graph",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"docgraph version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: .docgraph/config.yaml)",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """DocGraph - documentation tooling knowledge graph."""
    try:
        config = load_config(config_path)
        configure_logging(config["logging"]["level"])
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(2)
    ctx.obj = {"config": config, "config_path": config_path}


def _open(ctx: typer.Context) -> DocGraph:
    try:
        return open_graph(ctx.obj["config"], read_only=True)
    except DocGraphError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show node/edge counts and a deployment summary."""
    with _open(ctx) as graph:
        data = graph.get_statistics()

    table = create_table("Knowledge Graph")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Storage", data["storage_path"])
    table.add_row("Nodes", str(data["node_count"]))
    for kind, count in data["nodes_by_type"].items():
        table.add_row(f"  {kind}", str(count))
    table.add_row("Edges", str(data["edge_count"]))
    for kind, count in data["edges_by_type"].items():
        table.add_row(f"  {kind}", str(count))
    summary = data["deployments"]
    table.add_row("Deployments", str(summary["total_deployments"]))
    table.add_row("Success rate", f"{summary['overall_success_rate'] * 100:.1f}%")
    table.add_row("Most used SSG", summary["most_used_ssg"])
    table.add_row("Most successful SSG", summary["most_successful_ssg"])
    console.print(table)


@app.command()
def health(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Check storage, integrity and configuration health."""
    config = ctx.obj["config"]
    storage_dir = get_storage_dir(config)
    try:
        graph = open_graph(config, read_only=True)
    except DocGraphError as e:
        print_warning(f"Graph could not be loaded: {e}")
        graph = None

    try:
        status = get_health_status(
            storage_dir,
            store=graph.store if graph else None,
            config_path=ctx.obj["config_path"],
        )
        if graph is not None:
            score = graph.analytics.get_health_score()
            status["deployment_health"] = score.to_dict()
    finally:
        if graph is not None:
            graph.close()

    if as_json:
        typer.echo(json.dumps(status, indent=2))
    else:
        lines = [f"Overall: {styled_status(status['status'])}"]
        for name, component in status["components"].items():
            reason = component.get("reason") or ", ".join(component.get("errors", [])) or ""
            lines.append(f"{name}: {styled_status(component['status'])} {reason}")
        if "deployment_health" in status:
            lines.append(f"deployment health score: {status['deployment_health']['score']}/100")
        print_panel("DocGraph Health", "\n".join(lines))

    if status["status"] == "unhealthy":
        raise typer.Exit(1)


@app.command()
def recommend(
    ctx: typer.Context,
    project_id: str | None = typer.Argument(None, help="Project node id (omit for global)"),
    ecosystem: str | None = typer.Option(None, "--ecosystem", "-e", help="Explicit ecosystem"),
    priority: str | None = typer.Option(
        None, "--priority", "-p", help="simplicity | features | performance"
    ),
    user: str | None = typer.Option(None, "--user", "-u", help="Apply this user's history"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Recommend a static site generator."""
    with _open(ctx) as graph:
        result = graph.recommend(project_id, ecosystem=ecosystem, priority=priority, user_id=user)

    if as_json:
        typer.echo(result.to_json())
        return

    print_success(f"{result.recommended} ({result.confidence * 100:.0f}% confidence)")
    for line in result.reasoning:
        console.print(f"  • {line}", markup=False)
    if result.alternatives:
        table = create_table("Alternatives")
        table.add_column("SSG", style="cyan")
        table.add_column("Score")
        table.add_column("Pros")
        table.add_column("Cons")
        for alt in result.alternatives:
            table.add_row(
                alt["name"], f"{alt['score']:.2f}", "; ".join(alt["pros"]), "; ".join(alt["cons"])
            )
        console.print(table)


@app.command()
def trends(
    ctx: typer.Context,
    period: int | None = typer.Option(None, "--period", help="Window width in days"),
) -> None:
    """Show deployment success trends."""
    if period is not None and period <= 0:
        print_error("--period must be positive")
        raise typer.Exit(2)
    with _open(ctx) as graph:
        report = graph.analytics.identify_trends(period)

    if not any(window.deployments for window in report.windows):
        print_info("No deployments recorded yet")
        return

    table = create_table(f"Deployment trends ({report.period_days}-day windows)")
    table.add_column("Window start")
    table.add_column("Deployments", justify="right")
    table.add_column("Success rate", justify="right")
    table.add_column("Top SSG")
    for window in report.windows:
        if not window.deployments:
            continue
        table.add_row(
            window.start[:10],
            str(window.deployments),
            f"{window.rate * 100:.1f}%",
            window.top_ssg or "-",
        )
    console.print(table)
    console.print(f"Direction: {styled_status(report.direction.value)}")


@app.command()
def report(ctx: typer.Context) -> None:
    """Print the deployment analytics report as JSON."""
    with _open(ctx) as graph:
        data = graph.analytics.generate_report()
    typer.echo(json.dumps(data, indent=2))


@app.command()
def verify(ctx: typer.Context) -> None:
    """Verify graph integrity on disk."""
    with _open(ctx) as graph:
        result = graph.store.verify_integrity()

    for warning in result["warnings"]:
        print_warning(warning)
    for error in result["errors"]:
        print_error(error)
    if result["valid"]:
        print_success("Knowledge graph is valid")
    else:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
