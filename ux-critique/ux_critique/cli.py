"""
Command-Line Interface

Runs the analysis pipeline on screenshots (or a live page) and renders
the result with rich, or as JSON for scripts and agents.

Exit codes: 0 passed, 2 quality validation failed, 1 error, 130 interrupted.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import PipelineConfig, Settings, load_config, load_pipeline_config
from .errors import PreconditionError
from .log import setup_logging
from .models import AnalysisRequest, PipelineOptions, PipelineResult
from .pipeline import PipelineController
from .retrieval import JsonKnowledgeRetriever

EXIT_QUALITY_FAILED = 2

console = Console()


@click.command()
@click.argument("images", nargs=-1)
@click.option(
    '--prompt', '-p',
    required=True,
    help='What to analyse, e.g. "Review the checkout flow for drop-off risks"'
)
@click.option(
    '--url',
    default=None,
    help='Capture this page (file:// or http(s)://) and analyse it as an extra image'
)
@click.option(
    '--selector',
    default=None,
    help='CSS selector to click before capture (with --url)'
)
@click.option(
    '--wait-for',
    default=None,
    help='CSS selector to wait for before capture (with --url)'
)
@click.option('--rag', is_flag=True, help='Inject validated knowledge-base context')
@click.option(
    '--knowledge',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='JSON knowledge file used by --rag'
)
@click.option('--research', is_flag=True, help='Back annotations with research citations')
@click.option('--strict', is_flag=True, help='Apply the strict quality threshold')
@click.option('--no-business-impact', is_flag=True, help='Skip business impact enrichment')
@click.option(
    '--output',
    default='rich',
    type=click.Choice(['rich', 'json'], case_sensitive=False),
    help='Output format: rich (colored terminal) or json (for agents)'
)
@click.option(
    '--env-file',
    default=None,
    type=click.Path(exists=True),
    help='Path to .env file (defaults to ./.env)'
)
@click.option('--verbose', '-v', is_flag=True, help='Debug logging to stderr')
@click.version_option(version=__version__)
def main(
    images: tuple[str, ...],
    prompt: str,
    url: Optional[str],
    selector: Optional[str],
    wait_for: Optional[str],
    rag: bool,
    knowledge: Optional[str],
    research: bool,
    strict: bool,
    no_business_impact: bool,
    output: str,
    env_file: Optional[str],
    verbose: bool
):
    """
    UX Critique - multi-model UX analysis with quality control

    Analyse UI screenshots with several vision models, validate the
    merged critique against a professional quality bar, and estimate
    the business impact of every finding.

    Examples:

      # Basic usage (uses .env config)
      ux-critique checkout.png -p "Review the checkout flow"

      # Live page, strict quality, JSON for agents
      ux-critique -p "Audit the pricing page" --url https://example.com/pricing \\
          --strict --output json

      # Knowledge-backed analysis
      ux-critique home.png mobile.png -p "Landing page conversion review" \\
          --rag --knowledge knowledge.json --research
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)

    try:
        if not images and not url:
            console.print("[red]❌ Provide at least one IMAGE or --url[/red]")
            sys.exit(1)

        settings = load_config(Path(env_file) if env_file else None)
        config = load_pipeline_config(settings)
        controller = _build_controller(settings, config, Path(knowledge) if knowledge else None)

        options = PipelineOptions(
            rag_enabled=rag,
            research_enabled=research,
            strict_quality=strict,
            business_impact=not no_business_impact,
        )

        result = asyncio.run(_run_analysis(
            controller,
            images=list(images),
            prompt=prompt,
            options=options,
            url=url,
            selector=selector,
            wait_for=wait_for,
            show_progress=output == 'rich'
        ))

        if output == 'json':
            _output_json(result)
        else:
            _output_rich(result)

        sys.exit(0 if result.success else EXIT_QUALITY_FAILED)

    except PreconditionError as e:
        console.print("[red]❌ Invalid request:[/red]")
        for error in e.errors:
            console.print(f"  • {escape(error)}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


def _build_controller(
    settings: Settings,
    config: PipelineConfig,
    knowledge_path: Optional[Path]
) -> PipelineController:
    retriever = JsonKnowledgeRetriever(knowledge_path) if knowledge_path else None
    return PipelineController.from_settings(settings, config, retriever=retriever)


async def _run_analysis(
    controller: PipelineController,
    images: list[str],
    prompt: str,
    options: PipelineOptions,
    url: Optional[str] = None,
    selector: Optional[str] = None,
    wait_for: Optional[str] = None,
    show_progress: bool = True
) -> PipelineResult:
    """Capture (if asked) and run the pipeline with a progress spinner"""

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=not show_progress
    ) as progress:
        task = progress.add_task("[cyan]Preparing analysis...", total=None)

        if url:
            # Only --url runs need Playwright
            from .capture import ScreenshotCapturer

            progress.update(task, description="[cyan]Capturing screenshot...")
            path = await ScreenshotCapturer().capture(url=url, selector=selector, wait_for=wait_for)
            images = [*images, str(path)]

        progress.update(task, description="[cyan]Analyzing UI with vision models...")
        request = AnalysisRequest(images=tuple(images), prompt=prompt, options=options)
        result = await controller.execute_pipeline(request)

        progress.update(task, description="[green]✓ Analysis complete", completed=True)

    return result


def _output_rich(result: PipelineResult):
    """Output result in rich formatted terminal output"""

    status = "[bold green]PASSED[/bold green]" if result.success else "[bold red]FAILED[/bold red]"
    primary = result.synthesis_metadata.primary_model if result.synthesis_metadata else "n/a"

    console.print()
    console.print(Panel.fit(
        f"[bold]UX Critique[/bold]  {status}\n"
        f"Primary model: {primary}  •  {len(result.annotations)} annotations  •  "
        f"{result.processing_time_seconds:.1f}s",
        border_style="cyan"
    ))

    # Scores table
    console.print("\n[bold]📊 Quality[/bold]")
    scores_table = Table(show_header=True, header_style="bold magenta")
    scores_table.add_column("Dimension", style="cyan")
    scores_table.add_column("Score", justify="right")
    scores_table.add_column("Grade", justify="center")

    metrics = result.quality_metrics
    for label, value in (
        ("Provider quality", metrics.provider_quality),
        ("Synthesis quality", metrics.synthesis_quality),
        ("Research validation", metrics.research_validation),
    ):
        pct = round(value * 100)
        scores_table.add_row(label, f"[{_score_color(pct)}]{pct}%[/]", _get_grade_emoji(pct))

    overall = round(metrics.overall_score * 100)
    scores_table.add_row(
        "[bold]Overall[/bold]",
        f"[bold][{_score_color(overall)}]{overall}%[/][/bold]",
        f"[bold]{_get_grade_emoji(overall)}[/bold]"
    )
    console.print(scores_table)

    # Annotations by severity
    if result.annotations:
        console.print(f"\n[bold]🔍 Findings ({len(result.annotations)})[/bold]")
        for severity, heading in (
            ("critical", "[bold red]Critical:[/bold red]"),
            ("suggested", "[bold yellow]Suggested:[/bold yellow]"),
            ("enhancement", "[bold green]Enhancements:[/bold green]"),
        ):
            group = [a for a in result.annotations if a.severity == severity]
            if not group:
                continue
            console.print(f"\n{heading}")
            for annotation in group:
                console.print(f"  {escape(str(annotation))}")
                impact = annotation.business_impact
                if impact:
                    console.print(
                        f"     💰 ROI {impact.roi_score}/10 • {impact.priority} • "
                        f"{impact.implementation_effort.time_estimate} • "
                        f"{escape(impact.revenue_projection.monthly_increase)}/month"
                    )
                if annotation.research_sources:
                    console.print(f"     📚 {escape(', '.join(annotation.research_sources))}", style="dim")

    if result.violations:
        console.print("\n[bold red]Quality violations:[/bold red]")
        for violation in result.violations:
            console.print(f"  • {escape(violation)}")
    if result.error and not result.violations:
        console.print(f"\n[red]❌ {escape(result.error)}[/red]")

    # Provenance
    provenance = [f"Stages: {' → '.join(result.processing_stages)}"]
    if result.fallbacks_used:
        provenance.append(f"Fallbacks: {', '.join(result.fallbacks_used)}")
    if result.synthesis_metadata:
        provenance.append(
            f"Models used: {result.synthesis_metadata.total_models_used} "
            f"(confidence {result.synthesis_metadata.confidence_score:.2f})"
        )
    for attempt in result.recovery_attempts:
        outcome = "accepted" if attempt.accepted else (attempt.note or "discarded")
        provenance.append(f"Recovery {attempt.strategy}: {outcome}")
    if result.knowledge:
        provenance.append(
            f"Knowledge: {len(result.knowledge.entries)} used, {result.knowledge.filtered_count} filtered"
        )

    console.print()
    console.print(Panel(escape("\n".join(provenance)), title="Provenance", border_style="dim"))
    console.print()


def _output_json(result: PipelineResult):
    """Output result as JSON for coding agents"""
    print(json.dumps(result.model_dump(mode="json"), indent=2))


def _score_color(score: float) -> str:
    if score >= 90:
        return "green"
    elif score >= 75:
        return "yellow"
    elif score >= 60:
        return "orange3"
    else:
        return "red"


def _get_grade_emoji(score: float) -> str:
    """Get emoji for grade"""
    if score >= 90:
        return "🌟"
    elif score >= 75:
        return "✅"
    elif score >= 60:
        return "⚠️"
    else:
        return "❌"


if __name__ == "__main__":
    main()
