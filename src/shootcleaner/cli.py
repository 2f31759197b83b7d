"""CLI entry point for shootcleaner."""

import dataclasses
import logging
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from shootcleaner.analysis import (
    ImageAnalysis,
    jobs_from_analyses,
    load_analyses,
    load_style_profile,
    merge_analyses,
    save_analyses,
    summarize_decisions,
)
from shootcleaner.compiler import compile_settings
from shootcleaner.discovery import discover_images, get_image_stats
from shootcleaner.engine import (
    BatchEngine,
    BatchProgress,
    CancelToken,
    EnhancementJob,
    JobStatus,
    create_jobs,
)
from shootcleaner.executor import Executor, MagickExecutor, PillowExecutor
from shootcleaner.instructions import OUTPUT_FORMATS, command_for
from shootcleaner.prepare import DEFAULT_OPENAI_MODEL, prepare_analysis_batch
from shootcleaner.report import generate_report
from shootcleaner.settings import (
    SLIDER_RANGES,
    EnhancementSettings,
    load_settings,
    save_settings,
)
from shootcleaner.vision import BatchCancelledError, VisionBatchClient

# Set up rich console
console = Console()

DEFAULT_OUTPUT_DIR = Path("./enhanced")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler.

    Args:
        verbose: If True, set log level to DEBUG
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def fail(message: object) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


@contextmanager
def cancel_on_interrupt(token: CancelToken) -> Iterator[None]:
    """Turn Ctrl-C into a cancel request for the running batch."""

    def handler(signum, frame):
        console.print("\n[yellow]Cancelling after the current image...[/yellow]")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def make_executor(name: str, magick_binary: str) -> Executor:
    if name == "magick":
        return MagickExecutor(binary=magick_binary)
    return PillowExecutor()


def show_discovery(images: list[Path]) -> None:
    stats = get_image_stats(images)
    table = Table(title="Discovery Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total Images", str(stats["total"]))
    table.add_row("Total Size", f"{stats['total_size_mb']} MB")
    table.add_row("Average Size", f"{stats['avg_size_mb']} MB")

    for ext, count in stats["by_extension"].items():
        table.add_row(f"  {ext}", str(count))

    console.print(table)


def list_images(images: list[Path]) -> None:
    for img in images[:10]:
        console.print(f"  - {img.name}")
    if len(images) > 10:
        console.print(f"  ... and {len(images) - 10} more")


def run_enhancement(
    jobs: list[EnhancementJob],
    output_dir: Path,
    executor: Executor,
    report: Path | None,
    format: str,
    analyses: list[ImageAnalysis] | None = None,
) -> None:
    """Run jobs with a progress bar, print a summary and write the report.

    Exits 130 if the batch was cancelled and 1 if any job failed.
    """
    engine = BatchEngine(executor)
    token = CancelToken()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Enhancing...", total=len(jobs))

        def on_progress(update: BatchProgress) -> None:
            progress.update(
                task, completed=update.completed, description=update.job_id
            )

        with cancel_on_interrupt(token):
            try:
                finished = engine.run_batch(
                    jobs, output_dir, on_progress=on_progress, cancel=token
                )
            except ValueError as e:
                fail(e)

        progress.update(task, completed=len(finished), description="Done")

    completed = [job for job in finished if job.status == JobStatus.COMPLETED]
    failed = [job for job in finished if job.status == JobStatus.ERROR]

    table = Table(title="Enhancement Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Jobs", str(len(jobs)))
    table.add_row("Attempted", str(len(finished)))
    table.add_row("Completed", str(len(completed)))
    table.add_row("Failed", str(len(failed)))
    console.print(table)

    for job in failed:
        console.print(f"[red]✗[/red] {job.source.name}: {job.error}")

    if report is not None:
        try:
            written = generate_report(finished, report, format=format, analyses=analyses)
        except Exception as e:
            fail(e)
        for path in written:
            console.print(f"Report saved to: [cyan]{path}[/cyan]")

    if token.cancelled:
        console.print(
            f"\n[yellow]Cancelled.[/yellow] "
            f"{len(jobs) - len(finished)} images were not processed."
        )
        sys.exit(130)

    console.print(f"\nOutput written to: [cyan]{output_dir}[/cyan]")

    if failed:
        sys.exit(1)

    console.print("[bold green]✓ Complete![/bold green]\n")


def report_options(func):
    func = click.option(
        "--format",
        "-f",
        type=click.Choice(["json", "markdown", "both"], case_sensitive=False),
        default="json",
        help="Report format",
    )(func)
    func = click.option(
        "--report",
        type=click.Path(path_type=Path),
        default=None,
        help="Write a batch report to this path",
    )(func)
    return func


def executor_options(func):
    func = click.option(
        "--magick-binary",
        default="magick",
        show_default=True,
        help="ImageMagick binary used by --executor magick",
    )(func)
    func = click.option(
        "--executor",
        "executor_name",
        type=click.Choice(["pillow", "magick"]),
        default="pillow",
        show_default=True,
        help="Backend that applies the enhancements",
    )(func)
    func = click.option(
        "--output-dir",
        "-o",
        type=click.Path(file_okay=False, path_type=Path),
        envvar="SHOOTCLEANER_OUTPUT_DIR",
        default=DEFAULT_OUTPUT_DIR,
        show_default=True,
        help="Directory for enhanced images",
    )(func)
    return func


def slider_options(func):
    for name in reversed(list(SLIDER_RANGES)):
        low, high = SLIDER_RANGES[name]
        func = click.option(
            f"--{name.replace('_', '-')}",
            name,
            type=click.FloatRange(low, high),
            default=None,
            help=f"{name.replace('_', ' ').capitalize()} ({low}..{high})",
        )(func)
    return func


@click.group()
@click.version_option(package_name="shootcleaner")
def main() -> None:
    """ShootCleaner - batch photo culling and enhancement.

    Examples:

        \b
        # Brighten and warm a folder of photos
        $ shootcleaner enhance ./photos --brightness 10 --temperature 20

        \b
        # Ask the vision model to cull a shoot
        $ shootcleaner analyze ./photos --style style.json

        \b
        # Apply the recommended edits to kept photos
        $ shootcleaner apply analysis.json --report report --format both
    """


@main.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--settings",
    "settings_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Load enhancement settings from a JSON file",
)
@click.option(
    "--save-settings",
    "settings_out",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the effective settings to a JSON file",
)
@slider_options
@click.option(
    "--output-format",
    type=click.Choice(sorted(OUTPUT_FORMATS)),
    default=None,
    help="Convert images to this format",
)
@click.option("--quality", type=click.IntRange(1, 100), default=None, help="JPEG quality")
@click.option(
    "--resize",
    type=str,
    default=None,
    metavar="WxH",
    help="Fit images within WIDTHxHEIGHT",
)
@executor_options
@report_options
@click.option("--max-images", type=int, default=None, help="Limit number of images")
@click.option("--recursive", "-r", is_flag=True, help="Include subdirectories")
@click.option("--dry-run", is_flag=True, help="Show the commands without running them")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def enhance(
    path: Path,
    settings_file: Path | None,
    settings_out: Path | None,
    output_format: str | None,
    quality: int | None,
    resize: str | None,
    output_dir: Path,
    executor_name: str,
    magick_binary: str,
    report: Path | None,
    format: str,
    max_images: int | None,
    recursive: bool,
    dry_run: bool,
    verbose: bool,
    **sliders: float | None,
) -> None:
    """Apply slider settings to every image under PATH."""
    setup_logging(verbose)

    console.print("\n[bold cyan]ShootCleaner[/bold cyan] - Batch Enhancement\n")

    try:
        settings = (
            load_settings(settings_file) if settings_file else EnhancementSettings()
        )

        overrides: dict[str, object] = {
            name: value for name, value in sliders.items() if value is not None
        }
        if output_format is not None:
            overrides["format"] = output_format
        if quality is not None:
            overrides["quality"] = quality
        if resize is not None:
            width, _, height = resize.lower().partition("x")
            overrides.update(resize=True, width=int(width), height=int(height))

        settings = dataclasses.replace(settings, **overrides)
    except (ValueError, OSError) as e:
        fail(e)

    if settings_out is not None:
        save_settings(settings, settings_out)

    instructions = compile_settings(settings)

    console.print("[bold]1. Discovering images...[/bold]")
    try:
        images = discover_images(path, recursive=recursive, max_images=max_images)
    except Exception as e:
        fail(e)

    if not images:
        console.print("[yellow]No images found.[/yellow]")
        sys.exit(0)

    show_discovery(images)

    if not instructions:
        console.print("[yellow]Settings are all neutral; nothing to apply.[/yellow]")
        sys.exit(0)

    console.print("\n[bold]2. Enhancement chain:[/bold]")
    for step, instruction in enumerate(instructions, start=1):
        console.print(f"  {step}. [green]{command_for(instruction)}[/green]")

    if dry_run:
        console.print("\n[yellow]Dry run - stopping here.[/yellow]")
        console.print(f"\nWould process {len(images)} images:")
        list_images(images)
        sys.exit(0)

    console.print("\n[bold]3. Enhancing...[/bold]")
    run_enhancement(
        create_jobs(images, instructions),
        output_dir,
        make_executor(executor_name, magick_binary),
        report,
        format,
    )


@main.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--style",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Photographer style profile (JSON)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("./analysis.json"),
    show_default=True,
    help="Where to write the analysis",
)
@click.option(
    "--model",
    type=str,
    envvar="SHOOTCLEANER_MODEL",
    default=DEFAULT_OPENAI_MODEL,
    show_default=True,
    help="OpenAI model to use",
)
@click.option("--poll-interval", type=int, default=30, help="Seconds between status checks")
@click.option("--max-images", type=int, default=100, help="Limit number of images")
@click.option("--recursive", "-r", is_flag=True, help="Include subdirectories")
@click.option("--dry-run", is_flag=True, help="Show what would be sent without calling the API")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def analyze(
    path: Path,
    style: Path | None,
    output: Path,
    model: str,
    poll_interval: int,
    max_images: int,
    recursive: bool,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Cull the images under PATH with the vision model."""
    setup_logging(verbose)

    console.print("\n[bold cyan]ShootCleaner[/bold cyan] - AI Culling\n")

    try:
        profile = load_style_profile(style) if style else None
    except ValueError as e:
        fail(e)

    console.print("[bold]1. Discovering images...[/bold]")
    try:
        images = discover_images(path, recursive=recursive, max_images=max_images)
    except Exception as e:
        fail(e)

    if not images:
        console.print("[yellow]No images found.[/yellow]")
        sys.exit(0)

    show_discovery(images)

    if dry_run:
        console.print("\n[yellow]Dry run - stopping here.[/yellow]")
        console.print(f"\nWould analyze {len(images)} images with {model}:")
        list_images(images)
        sys.exit(0)

    console.print("\n[bold]2. Preparing batch...[/bold]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Processing images...", total=None)
        batch_requests, image_metadata = prepare_analysis_batch(
            images, style=profile, model=model
        )
        progress.update(task, completed=True)

    console.print(f"[green]Prepared {len(batch_requests)} requests[/green]")

    if not batch_requests:
        console.print("[yellow]No images could be processed.[/yellow]")
        sys.exit(0)

    console.print("\n[bold]3. Submitting batch...[/bold]")
    try:
        client = VisionBatchClient()
        batch_id = client.submit_batch(batch_requests)
    except Exception as e:
        fail(e)

    console.print(f"[green]Batch submitted:[/green] {batch_id}")

    console.print("\n[bold]4. Waiting for results...[/bold]")
    console.print("[dim]This may take several minutes. Ctrl-C cancels the batch.[/dim]\n")

    token = CancelToken()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Processing batch...", total=None)
            with cancel_on_interrupt(token):
                status = client.poll_batch(
                    batch_id, poll_interval=poll_interval, cancel=token
                )
            progress.update(task, completed=True)

        counts = status["request_counts"]
        console.print(
            f"\n[green]Batch complete![/green] "
            f"{counts['succeeded']} succeeded, "
            f"{counts['errored']} errored"
        )
        batch_results = client.get_batch_results(batch_id)
    except BatchCancelledError:
        console.print(f"\n[yellow]Cancelled.[/yellow] Batch ID: {batch_id}")
        sys.exit(130)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        console.print(f"\nBatch ID: {batch_id}")
        sys.exit(1)

    analyses = merge_analyses(batch_results, image_metadata)
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        save_analyses(analyses, output)
    except (ValueError, OSError) as e:
        console.print(f"[bold red]Error:[/bold red] Could not save analysis: {e}")
        console.print(f"\nBatch ID: {batch_id}")
        sys.exit(1)

    summary = summarize_decisions(analyses)
    table = Table(title="Culling Summary")
    table.add_column("Decision", style="cyan")
    table.add_column("Images", style="green")
    for decision in ("keep", "review", "reject"):
        table.add_row(decision.capitalize(), str(summary[decision]))
    table.add_row("Avg. confidence", f"{summary['average_confidence']:.2f}")
    console.print(table)

    console.print(f"\n[bold green]✓ Complete![/bold green] Analysis saved to: [cyan]{output}[/cyan]\n")


@main.command()
@click.argument(
    "analysis_json", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--include",
    type=click.Choice(["keep", "review", "reject"]),
    multiple=True,
    default=("keep", "review"),
    show_default=True,
    help="Decisions whose images are enhanced",
)
@executor_options
@report_options
@click.option("--dry-run", is_flag=True, help="Show the commands without running them")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def apply(
    analysis_json: Path,
    include: tuple[str, ...],
    output_dir: Path,
    executor_name: str,
    magick_binary: str,
    report: Path | None,
    format: str,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Apply the edits recommended in ANALYSIS_JSON."""
    setup_logging(verbose)

    console.print("\n[bold cyan]ShootCleaner[/bold cyan] - Apply Recommendations\n")

    try:
        analyses = load_analyses(analysis_json)
    except ValueError as e:
        fail(e)

    jobs = [job for job in jobs_from_analyses(analyses, set(include)) if job.instructions]

    if not jobs:
        console.print("[yellow]No images with recommended edits.[/yellow]")
        sys.exit(0)

    for job in jobs:
        commands = ", ".join(command_for(i) for i in job.instructions)
        console.print(f"  {job.source.name}: [green]{commands}[/green]")

    if dry_run:
        console.print("\n[yellow]Dry run - stopping here.[/yellow]")
        sys.exit(0)

    console.print(f"\n[bold]Enhancing {len(jobs)} images...[/bold]")
    run_enhancement(
        jobs,
        output_dir,
        make_executor(executor_name, magick_binary),
        report,
        format,
        analyses=analyses,
    )


if __name__ == "__main__":
    main()
