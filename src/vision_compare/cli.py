"""CLI interface for multi-model image recognition."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .batch import BatchRecognizer, BatchReport, BatchUploader
from .comparison import ComparisonOrchestrator, ComparisonRun
from .config import DEFAULT_API_URLS, EngineSettings, ProviderCatalog, resolve_api_key
from .dispatcher import RecognitionDispatcher, RecognitionRequest
from .errors import ConfigurationError, RecognitionError
from .image_processor import ImageRef
from .prompts import RECOGNITION_PROMPTS, RecognitionType
from .providers.base import ModelConfig, RecognitionResult
from .results import ComparisonStatus

console = Console()

TYPE_CHOICE = click.Choice([t.value for t in RecognitionType])
PREVIEW_CHARS = 80


def setup_logging(verbose: bool = False):
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_time=False)],
    )


def _load_catalog(providers_file: Optional[Path]) -> ProviderCatalog:
    if providers_file is None:
        return ProviderCatalog([])
    return ProviderCatalog.load(providers_file)


def _run(coro, verbose: bool = False):
    """Run a coroutine and turn engine failures into exit codes."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        sys.exit(130)
    except RecognitionError as e:
        console.print(f"\n[red]Error [{e.code}]: {escape(str(e))}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Recognize images with several vision models and compare the results.

    Examples:

        vision-compare recognize receipt.jpg --provider gemini --model gemini-1.5-flash

        vision-compare compare scan.png -m openai::gpt-4o -m claude::claude-3-5-sonnet-latest

        vision-compare batch *.png -m gemini::gemini-1.5-flash --type document
    """
    load_dotenv()
    setup_logging(verbose)

    try:
        settings = EngineSettings.from_env()
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    ctx.obj = {"settings": settings, "verbose": verbose}


@cli.command()
@click.argument("image", type=str)
@click.option("--provider", "-P", required=True, help="Provider id (gemini, openai, claude, ... or custom-*)")
@click.option("--model", "-m", required=True, help="Model name")
@click.option("--api-key", type=str, help="API key (defaults to the provider's environment variable)")
@click.option("--api-url", type=str, help="API base URL (defaults per provider)")
@click.option("--type", "-t", "recognition_type", type=TYPE_CHOICE, default=RecognitionType.AUTO.value, help="Recognition type")
@click.option("--prompt", "-p", type=str, help="Custom prompt replacing the recognition type's template")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Save the recognized text to a file")
@click.pass_obj
def recognize(
    obj: dict,
    image: str,
    provider: str,
    model: str,
    api_key: Optional[str],
    api_url: Optional[str],
    recognition_type: str,
    prompt: Optional[str],
    output: Optional[Path],
):
    """Recognize IMAGE (local path or URL) with one model."""
    settings: EngineSettings = obj["settings"]
    key = resolve_api_key(provider, api_key)
    if not key:
        raise click.UsageError(f"No API key for {provider}: pass --api-key or set its environment variable")

    config = ModelConfig(
        provider=provider,
        model=model,
        api_key=key,
        api_url=api_url or DEFAULT_API_URLS.get(provider.lower(), ""),
        is_custom=provider.startswith("custom"),
    )

    async def _recognize() -> RecognitionResult:
        async with RecognitionDispatcher(settings) as dispatcher:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task(f"Recognizing with {config.identifier}...", total=None)
                return await dispatcher.recognize(
                    RecognitionRequest(
                        image=ImageRef.parse(image),
                        model_config=config,
                        recognition_type=recognition_type,
                        prompt_override=prompt,
                    )
                )

    result = _run(_recognize(), obj["verbose"])
    _display_result(result, title=f"{config.identifier} ({recognition_type})")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.content, encoding="utf-8")
        console.print(f"\n[green]Saved to {output}[/green]")


@cli.command()
@click.argument("image", type=str)
@click.option("--model", "-m", "models", multiple=True, help="Model as provider::model (repeatable; defaults to every catalog model)")
@click.option("--providers-file", "-f", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="JSON provider catalog")
@click.option("--type", "-t", "recognition_type", type=TYPE_CHOICE, default=RecognitionType.AUTO.value, help="Recognition type")
@click.option("--prompt", "-p", type=str, help="Custom prompt replacing the recognition type's template")
@click.option("--json-output", type=click.Path(path_type=Path), help="Save the comparison as JSON")
@click.pass_obj
def compare(
    obj: dict,
    image: str,
    models: tuple[str, ...],
    providers_file: Optional[Path],
    recognition_type: str,
    prompt: Optional[str],
    json_output: Optional[Path],
):
    """Run IMAGE through several models one after another and compare them."""
    settings: EngineSettings = obj["settings"]

    async def _compare() -> ComparisonRun:
        catalog = _load_catalog(providers_file)
        identifiers = list(models) or catalog.model_identifiers()
        if not identifiers:
            raise ConfigurationError("No models to compare: pass --model or list models in the providers file")
        configs = [catalog.model_config(identifier) for identifier in identifiers]

        async with RecognitionDispatcher(settings) as dispatcher:
            orchestrator = ComparisonOrchestrator(dispatcher, pacing_delay=settings.pacing_delay)
            return await orchestrator.run(
                ImageRef.parse(image),
                configs,
                recognition_type=recognition_type,
                prompt_override=prompt,
                on_update=lambda entry: console.print(
                    f"[dim]{entry.model_identifier}: {entry.status.value}[/dim]"
                ),
            )

    run = _run(_compare(), obj["verbose"])
    _display_comparison(run)

    if json_output:
        json_output.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "recognition_type": run.recognition_type.value,
            "results": [r.to_dict() for r in run.results],
            "stats": asdict(run.stats) if run.stats else None,
        }
        json_output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        console.print(f"\n[green]Saved to {json_output}[/green]")


@cli.command()
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--model", "-m", "model", required=True, help="Model as provider::model")
@click.option("--providers-file", "-f", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="JSON provider catalog")
@click.option("--type", "-t", "recognition_type", type=TYPE_CHOICE, default=RecognitionType.AUTO.value, help="Recognition type")
@click.pass_obj
def batch(
    obj: dict,
    images: tuple[Path, ...],
    model: str,
    providers_file: Optional[Path],
    recognition_type: str,
):
    """Upload IMAGES in bounded waves, then recognize them one by one."""
    settings: EngineSettings = obj["settings"]

    async def _batch() -> tuple[BatchReport, BatchReport]:
        config = _load_catalog(providers_file).model_config(model)

        async with RecognitionDispatcher(settings) as dispatcher:
            uploader = BatchUploader(
                lambda path: asyncio.to_thread(dispatcher.acquirer.store_upload, path),
                concurrency=settings.batch_concurrency,
            )
            uploads = await uploader.run(list(images))
            console.print(
                f"[cyan]Uploaded {len(uploads.succeeded)}/{len(images)} images "
                f"in {len(uploads.waves)} waves[/cyan]"
            )

            refs = [ImageRef.from_file_id(o.value) for o in uploads.succeeded]
            recognizer = BatchRecognizer(dispatcher, pacing_delay=settings.pacing_delay)
            recognitions = await recognizer.run(refs, config, recognition_type=recognition_type)
            return uploads, recognitions

    uploads, recognitions = _run(_batch(), obj["verbose"])

    table = Table(title=f"Batch recognition ({recognition_type})")
    table.add_column("Image")
    table.add_column("Status")
    table.add_column("Result")

    for outcome in uploads.failed:
        table.add_row(str(outcome.item), "[red]upload failed[/red]", escape(str(outcome.error)))
    for source, outcome in zip(
        (o.item for o in uploads.succeeded), recognitions.outcomes
    ):
        if outcome.ok:
            table.add_row(str(source), "[green]completed[/green]", _preview(outcome.value.content))
        else:
            table.add_row(str(source), "[red]error[/red]", escape(str(outcome.error)))

    console.print(table)


@cli.command()
@click.option("--model", "-m", "model", required=True, help="Model as provider::model")
@click.option("--providers-file", "-f", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="JSON provider catalog")
@click.pass_obj
def check(obj: dict, model: str, providers_file: Optional[Path]):
    """Check that a provider's API is reachable with the configured key."""
    settings: EngineSettings = obj["settings"]

    async def _check():
        config = _load_catalog(providers_file).model_config(model)
        async with RecognitionDispatcher(settings) as dispatcher:
            return await dispatcher.check_connection(config)

    outcome = _run(_check(), obj["verbose"])
    if outcome.ok:
        console.print(f"[green]✓ {model}: {outcome.message}[/green]")
    else:
        console.print(f"[red]✗ {model}: {outcome.message}[/red]")
        sys.exit(1)


@cli.command("types")
def list_types():
    """List the recognition types and their prompts."""
    table = Table(title="Recognition types")
    table.add_column("Type", style="cyan")
    table.add_column("Prompt")
    for kind in RecognitionType:
        table.add_row(kind.value, RECOGNITION_PROMPTS[kind])
    console.print(table)


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    preview = flat if len(flat) <= PREVIEW_CHARS else flat[:PREVIEW_CHARS - 1] + "…"
    return escape(preview)


def _display_result(result: RecognitionResult, title: str):
    """Display a single recognition result."""
    console.print(Panel(escape(result.content), title=title, border_style="green"))

    usage = result.metadata.get("usage")
    if usage:
        console.print(f"[dim]Usage: {usage}[/dim]")
    console.print(f"[dim]Confidence: {result.confidence:.2f}  Timestamp: {result.timestamp}[/dim]")


def _display_comparison(run: ComparisonRun):
    """Display a comparison table followed by performance stats."""
    table = Table(title=f"Model comparison ({run.recognition_type.value})")
    table.add_column("Model", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Result")

    for entry in run.results:
        if entry.status is ComparisonStatus.COMPLETED:
            status = "[green]completed[/green]"
            detail = _preview(entry.result.content)
            confidence = f"{entry.result.confidence:.2f}"
        elif entry.status is ComparisonStatus.ERROR:
            status = "[red]error[/red]"
            detail = escape(entry.error or "")
            confidence = "-"
        else:
            status = f"[yellow]{entry.status.value}[/yellow]"
            detail = ""
            confidence = "-"
        duration = f"{entry.duration_ms:,.0f}ms" if entry.duration_ms is not None else "-"
        table.add_row(entry.model_identifier, status, duration, confidence, detail)

    console.print(table)

    if run.stopped_early:
        console.print("[yellow]Comparison stopped before every model ran[/yellow]")

    stats = run.stats
    if stats is None:
        console.print("[red]No model completed[/red]")
        return

    console.print(
        Panel.fit(
            f"Completed: {stats.completed_models}/{stats.total_models}\n"
            f"Average duration: {stats.average_duration_ms:,.0f}ms\n"
            f"Fastest: {stats.fastest_model}\n"
            f"Most accurate: {stats.most_accurate_model}\n"
            f"[bold]Recommended: {stats.recommended_model}[/bold]",
            title="Performance",
            border_style="cyan",
        )
    )


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
