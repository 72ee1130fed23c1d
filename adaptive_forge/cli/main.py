"""
CLI interface for Adaptive Forge.

Provides command-line access to generation and to the routing, pricing and
search-analysis helpers.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from adaptive_forge.config.loader import load_pipeline_config
from adaptive_forge.core.complexity import analyze_complexity, classify_complexity
from adaptive_forge.core.errors import ConfigurationError
from adaptive_forge.core.models import GenerationRequest, GenerationResult
from adaptive_forge.core.pipeline import GenerationPipeline
from adaptive_forge.core.pricing import PRICING_TABLE, estimate_cost
from adaptive_forge.core.routing import ModelTier, select_model
from adaptive_forge.core.search import analyze_search_need
from adaptive_forge.sdk.openai_client import OpenAICompletionService
from adaptive_forge.sdk.perplexity_client import PerplexitySearchProvider
from adaptive_forge.storage.repository import format_usage_report
from adaptive_forge.telemetry.logging import configure_logging

app = typer.Typer()
console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Adaptive Forge CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Adaptive Forge - Use --help to see available commands")


def _read_file_context(files: Optional[List[Path]]) -> List[str]:
    return [f"**{path.name}**:\n{path.read_text(encoding='utf-8')}" for path in files or []]


@app.command()
def generate(
    request: str = typer.Argument(..., help="Description of the diagram to generate"),
    max_iterations: Optional[int] = typer.Option(
        None,
        "--max-iterations",
        "-n",
        help="Iteration ceiling (defaults to the configured value)"
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML pipeline configuration"
    ),
    files: Optional[List[Path]] = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Text file to include as context (repeatable)"
    ),
    previous: Optional[Path] = typer.Option(
        None,
        "--previous",
        "-p",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Previous diagram to iterate on"
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the artifact here instead of stdout"
    ),
    search: bool = typer.Option(
        False,
        "--search",
        "-s",
        help="Attach web research when the request asks for current data"
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Minimum log level"),
    show_usage: bool = typer.Option(False, "--show-usage", help="Print the usage report afterwards"),
):
    """
    Generate a diagram for a request.

    Exits 0 when an artifact passed the structural self-check, 1 otherwise.
    The artifact is still written when it was produced but failed checks.
    """
    configure_logging(json_logs=json_logs, log_level=log_level)

    try:
        config = load_pipeline_config(config_path)
        service = OpenAICompletionService()
        search_provider = PerplexitySearchProvider() if search else None
        generation_request = GenerationRequest(
            text=request,
            file_context=_read_file_context(files),
            prior_artifacts=[previous.read_text(encoding="utf-8")] if previous else [],
        )
    except (ConfigurationError, ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    pipeline = GenerationPipeline(config, service, search_provider=search_provider)
    result = asyncio.run(pipeline.generate(generation_request, max_iterations, use_search=search))

    _display_result(result)

    if result.artifact is not None:
        if output is not None:
            output.write_text(result.artifact, encoding="utf-8")
            console.print(f"[green]✓[/] Artifact written to {output}")
        else:
            typer.echo(result.artifact)

    if show_usage:
        console.print("\n[bold]Usage[/bold]")
        for line in format_usage_report(pipeline.usage_tracker.stats()):
            console.print(line)

    sys.exit(EXIT_CODE_PASS if result.success else EXIT_CODE_FAIL)


@app.command()
def classify(
    request: str = typer.Argument(..., help="Request text to analyze"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a YAML pipeline configuration"),
):
    """Show the complexity score and the model selection for a request."""
    try:
        config = load_pipeline_config(config_path)
    except (ConfigurationError, ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    analysis = analyze_complexity(request)
    complexity = classify_complexity(request)
    selection = select_model(complexity, config.model)

    table = Table(title="Complexity Analysis")
    table.add_column("Factor")
    table.add_column("Value", justify="right")
    for name, value in analysis.factors.items():
        table.add_row(name, f"{value:.3f}")
    table.add_row("[bold]score[/bold]", f"[bold]{analysis.score:.3f}[/bold]")
    console.print(table)

    console.print(f"Classification: [bold]{complexity.value}[/bold]")
    console.print(f"Indicators: {'; '.join(analysis.indicators)}")
    console.print(f"Tier: {selection.tier.value}")
    console.print(f"Reasoning effort: {selection.reasoning_effort.value if selection.reasoning_effort else 'n/a'}")
    console.print(f"Temperature: {selection.temperature}")
    console.print(f"Max output tokens: {selection.max_output_tokens}")
    console.print(f"Cost multiplier: {selection.cost_multiplier}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pricing(
    tokens_in: int = typer.Option(0, "--tokens-in", min=0, help="Input tokens to estimate"),
    tokens_out: int = typer.Option(0, "--tokens-out", min=0, help="Output tokens to estimate"),
):
    """List per-tier prices, optionally with the cost of a call of the given size."""
    estimating = tokens_in > 0 or tokens_out > 0

    table = Table(title="Model Tier Pricing (USD per 1M tokens)")
    table.add_column("Tier")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Reasoning")
    if estimating:
        table.add_column("Estimated Cost", justify="right")

    for tier in sorted(ModelTier):
        row_pricing = PRICING_TABLE.get_pricing(tier)
        row = [
            tier.value,
            f"${row_pricing.input_cost_per_1m:.2f}",
            f"${row_pricing.output_cost_per_1m:.2f}",
            "yes" if tier.supports_reasoning_effort else "no",
        ]
        if estimating:
            row.append(f"${estimate_cost(tier, tokens_in, tokens_out):.6f}")
        table.add_row(*row)

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("search-check")
def search_check(
    request: str = typer.Argument(..., help="Request text to analyze"),
):
    """Show whether a request would trigger web search, and the query used."""
    analysis = analyze_search_need(request)

    verdict = "[green]yes[/]" if analysis.needs_search else "[yellow]no[/]"
    console.print(f"Needs search: {verdict}")
    console.print(f"Confidence: {analysis.confidence * 100:.0f}%")
    console.print(f"Reasoning: {analysis.reasoning}")
    if analysis.triggers:
        console.print(f"Triggers: {', '.join(analysis.triggers)}")
    if analysis.search_query:
        console.print(f"Query: {analysis.search_query}")
    sys.exit(EXIT_CODE_PASS)


def _display_result(result: GenerationResult):
    """Display generation metadata."""
    metadata = result.metadata
    status = "[green]success[/]" if result.success else "[red]failure[/]"

    console.print("\n[bold]Generation Result[/bold]")
    console.print("-" * 40)
    console.print(f"Status: {status}")
    console.print(f"Tier: {metadata.tier_used.value if metadata.tier_used else 'none'}")
    if metadata.reasoning_effort is not None:
        console.print(f"Reasoning effort: {metadata.reasoning_effort.value}")
    if metadata.fallback_occurred and metadata.original_tier_attempted is not None:
        console.print(f"Fallback from: {metadata.original_tier_attempted.value}")
    console.print(f"Iterations: {metadata.iterations}")
    console.print(f"Tokens: {metadata.tokens_used}")
    console.print(f"Estimated cost: ${metadata.estimated_cost:.4f}")
    console.print(f"Time: {metadata.elapsed_ms}ms")

    if result.error:
        console.print(f"\n[red]Error:[/] {result.error}")
    for warning in metadata.validation_warnings or ():
        console.print(f"[yellow]Warning:[/] {warning}")


if __name__ == "__main__":
    app()
