"""CLI interface for the Build Planner."""

import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel

from shared.cli import create_table, error, handle_errors, info, print_table, success, warning
from shared.logger import setup_logger

from .config import PlannerConfig, SizeHints, load_config
from .errors import StructuralError, UnknownTargetError
from .models import Suggestion, format_bytes, parse_size
from .planner import BuildAnalysis, BuildPlanner
from .report import to_json
from .sizing import CachedSizeLookup, ChainedSizeLookup, DockerSizeLookup, StaticSizeTable

console = Console()


def create_size_bar(size: int, max_size: int, width: int = 30) -> str:
    """
    Create ASCII bar for size visualization.

    Args:
        size: Current size
        max_size: Maximum size for scaling
        width: Width of bar in characters

    Returns:
        ASCII bar string
    """
    if max_size == 0:
        return ""

    filled = int((size / max_size) * width)
    bar = "█" * filled + "░" * (width - filled)
    return bar


def parse_size_option(ctx, param, value: Optional[str]) -> Optional[int]:
    """Click callback turning "150MB"-style option values into bytes."""
    if value is None:
        return None
    try:
        return parse_size(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def display_analysis(analysis: BuildAnalysis, show_layers: bool = True) -> None:
    """
    Display stage and layer estimates with rich formatting.

    Args:
        analysis: BuildAnalysis to display
        show_layers: Whether to show the per-layer breakdown
    """
    build = analysis.build
    graph = build.graph
    final_stage = graph.final_stage(analysis.target)

    console.print(Panel(f"[bold cyan]{final_stage.base_image}[/bold cyan]", title="Build Analysis"))

    table = create_table(title="Stages")
    table.add_column("#", justify="right", style="cyan", width=4)
    table.add_column("Stage", style="bold")
    table.add_column("Base")
    table.add_column("Copies From", style="dim")
    table.add_column("Size", justify="right", style="yellow")

    for stage in graph.stages:
        marker = " [green](final)[/green]" if stage.identifier == final_stage.identifier else ""
        size = build.stage_size(stage.identifier)
        size_str = format_bytes(size)
        if build.stage_low_confidence(stage.identifier):
            size_str = f"~{size_str}"
        table.add_row(
            str(stage.index),
            f"{stage.identifier}{marker}",
            stage.base_image,
            ", ".join(stage.copy_from) or "-",
            size_str,
        )

    print_table(table)

    if show_layers:
        console.print("\n[bold yellow]Layer Breakdown:[/bold yellow]")

        table = create_table(title=None)
        table.add_column("Line", justify="right", style="cyan", width=5)
        table.add_column("Stage")
        table.add_column("Size", justify="right", style="yellow")
        table.add_column("Visual", width=32)
        table.add_column("Instruction", style="dim")

        max_layer_size = max((l.size_bytes or 0 for l in build.layers), default=0)

        for layer in build.layers:
            size_str = layer.size_human
            if layer.low_confidence:
                size_str = f"~{size_str}"
            table.add_row(
                str(layer.instruction.line),
                layer.stage,
                size_str,
                create_size_bar(layer.size_bytes or 0, max_layer_size),
                layer.instruction.text[:60],
            )

        print_table(table)

    console.print(f"\n  Final image: [bold]{analysis.final_size_human}[/bold] (stage {final_stage.identifier})")
    if build.low_confidence:
        console.print("  [dim]~ marks estimates based on defaults rather than known sizes[/dim]")
    console.print()


def display_suggestions(suggestions: List[Suggestion]) -> None:
    """Display ranked suggestions in a table."""
    if not suggestions:
        success("No optimizations found - build looks optimal under the known rules")
        return

    table = create_table(title="Optimization Suggestions")
    table.add_column("#", justify="right", style="cyan", width=3)
    table.add_column("Category", style="bold")
    table.add_column("Stage")
    table.add_column("Savings", justify="right", style="green")
    table.add_column("Rationale", no_wrap=False)

    for idx, suggestion in enumerate(suggestions, 1):
        savings = suggestion.savings_human
        if suggestion.low_confidence:
            savings = f"~{savings}"
        table.add_row(
            str(idx),
            suggestion.category.value,
            suggestion.target_stage,
            savings,
            suggestion.rationale,
        )

    print_table(table)

    total = sum(s.estimated_savings_bytes for s in suggestions)
    console.print(f"\n  Combined savings (upper bound, rules overlap): [bold green]{format_bytes(total)}[/bold green]\n")


def build_lookup(config: PlannerConfig, use_docker: bool, pull: bool):
    """Create the size lookup for one CLI run."""
    table = StaticSizeTable(config.image_sizes)
    if not (use_docker or pull):
        return CachedSizeLookup(table)

    try:
        docker_lookup = DockerSizeLookup(pull=pull)
    except ConnectionError as e:
        warning(str(e))
        warning("Falling back to the built-in size table")
        return CachedSizeLookup(table)

    return CachedSizeLookup(ChainedSizeLookup([docker_lookup, table]))


@click.command()
@click.argument("dockerfile", type=click.Path(allow_dash=True, path_type=Path))
@click.option("--target", "-t", help="Stage to treat as the final image (default: last stage)")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with estimator defaults and extra image sizes",
)
@click.option("--docker", "use_docker", is_flag=True, help="Read image sizes from the local Docker daemon")
@click.option("--pull", is_flag=True, help="Pull images missing locally (implies --docker)")
@click.option(
    "--dependency-size",
    callback=parse_size_option,
    help="Installed dependency footprint, e.g. 180MB",
)
@click.option(
    "--context-size",
    callback=parse_size_option,
    help="Size of the build context copied by 'COPY . .', e.g. 40MB",
)
@click.option(
    "--artifact-size",
    callback=parse_size_option,
    help="Size of build artifacts copied between stages, e.g. 3MB",
)
@click.option(
    "--layers/--no-layers",
    default=True,
    help="Show layer breakdown (default: true)",
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json"], case_sensitive=False),
    default="rich",
    show_default=True,
    help="Output format",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@handle_errors
def main(
    dockerfile: Path,
    target: Optional[str],
    config_path: Optional[Path],
    use_docker: bool,
    pull: bool,
    dependency_size: Optional[int],
    context_size: Optional[int],
    artifact_size: Optional[int],
    layers: bool,
    output: str,
    verbose: bool,
):
    """
    Build Planner - Estimate image size and plan multi-stage builds.

    Reads a Dockerfile, estimates the size of every layer and suggests
    base image swaps, multi-stage splits, unused copies to drop and
    lighter servers for static front-ends.

    Examples:

        \b
        # Analyze a Dockerfile
        build-planner Dockerfile

        \b
        # Use real sizes from the local Docker daemon
        build-planner Dockerfile --docker

        \b
        # Give size hints for a front-end build
        build-planner Dockerfile --dependency-size 250MB --context-size 30MB

        \b
        # JSON output
        build-planner Dockerfile --output json > report.json
    """
    # Setup logging
    if verbose:
        log_level = "DEBUG"
    elif output == "json":
        log_level = "WARNING"
    else:
        log_level = "INFO"
    setup_logger(__name__, level=log_level)

    try:
        config = load_config(config_path) if config_path else PlannerConfig()
    except ValueError as e:
        error(f"Invalid config: {e}")
        sys.exit(1)

    if str(dockerfile) == "-":
        with click.open_file("-") as f:
            text = f.read()
    elif not dockerfile.exists():
        error(f"File not found: {dockerfile}")
        sys.exit(1)
    else:
        text = dockerfile.read_text()

    planner = BuildPlanner(
        lookup=build_lookup(config, use_docker, pull),
        config=config,
        hints=SizeHints(
            dependency_bytes=dependency_size,
            context_bytes=context_size,
            artifact_bytes=artifact_size,
        ),
    )

    try:
        analysis = planner.analyze(text, target=target)
    except StructuralError as e:
        error(f"Invalid build description {dockerfile}: {e}")
        if e.instruction:
            error(f"  {e.instruction}")
        sys.exit(1)
    except UnknownTargetError as e:
        error(f"Unknown target stage: {e.target}")
        sys.exit(1)

    if output == "json":
        click.echo(to_json(analysis.to_dict()))
        sys.exit(0)

    display_analysis(analysis, show_layers=layers)
    display_suggestions(analysis.suggestions)

    if analysis.build.low_confidence:
        info("Some sizes are defaults; pass --docker or size hints for better estimates")

    success("Analysis completed!")
    sys.exit(0)


if __name__ == "__main__":
    main()
