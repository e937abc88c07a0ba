#!/usr/bin/env python3
"""
MathSnap: photo-to-solution math solver
Main CLI entry point.
"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel

from config import validate_config, LOG_LEVEL
from math_pipeline import PipelineController, PipelineStage, SolutionKind
from math_pipeline.cost_tracker import get_tracker, reset_tracker

app = typer.Typer(
    name="mathsnap",
    help="Extract, correct and solve math problems from photos.",
    add_completion=False,
)
console = Console()

KIND_STYLES = {
    SolutionKind.SUCCESS: ("green", "Solution"),
    SolutionKind.CONCLUSION: ("yellow", "Conclusion"),
    SolutionKind.ERROR: ("red", "Error"),
}


def setup_logging(verbose: bool):
    """Route pipeline logs through rich."""
    logging.basicConfig(
        level=LOG_LEVEL if verbose else "WARNING",
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _write_output(output: Path, controller: PipelineController):
    payload = controller.snapshot()
    payload["usage"] = get_tracker().to_dict()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    console.print(f"[dim]Session saved to:[/] {output}")


async def _run(
    controller: PipelineController,
    image_path: Path,
    text: str,
    expression: str,
    auto_solve: bool,
) -> int:
    with console.status("[bold green]Reading image..."):
        stage = await controller.process_image(image_path)

    extraction = controller.extraction
    if stage == PipelineStage.IDLE:
        console.print(Panel(
            f"[bold]{controller.marker.value}[/]\n{controller.message}",
            title="[red]Extraction failed[/]",
            border_style="red",
        ))
        return 1

    console.print(Panel(
        f"{extraction.full_text}\n\n[dim]Expression:[/] {extraction.expression or '(none)'}",
        title="1. Extracted text",
        border_style="cyan",
    ))
    console.print(Panel(
        f"{controller.text}\n\n[dim]Expression:[/] {controller.expression or '(none)'}",
        title=f"2. Corrected text [dim]({controller.correction.outcome.value})[/]",
        border_style="cyan",
    ))
    if controller.message:
        console.print(f"[yellow]⚠ {controller.message}[/]")

    if text is not None:
        controller.edit_text(text, expression)
        console.print(f"[dim]Using edited text:[/] {controller.text}")

    if not auto_solve:
        console.print("[dim]Skipping solve (--no-solve).[/]")
        return 0

    with console.status("[bold green]Solving..."):
        solution = await controller.solve()

    if solution is None:
        console.print("[yellow]⚠ Solution discarded: the problem changed while solving.[/]")
        return 1

    style, title = KIND_STYLES[solution.kind]
    console.print(Panel(Markdown(solution.solution), title=f"3. {title}", border_style=style))
    return 1 if solution.kind == SolutionKind.ERROR else 0


@app.command()
def solve(
    image_path: Path = typer.Argument(
        ...,
        help="Path to a PNG, JPEG or WEBP photo of the problem",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    text: str = typer.Option(
        None,
        "--text", "-t",
        help="Replace the corrected text before solving",
    ),
    expression: str = typer.Option(
        None,
        "--expression", "-e",
        help="Isolated expression to go with --text",
    ),
    no_solve: bool = typer.Option(
        False,
        "--no-solve",
        help="Stop after extraction and correction",
    ),
    output: Path = typer.Option(
        None,
        "--output", "-o",
        help="Write the session (texts, solution, usage) as JSON",
    ),
    verbose: bool = typer.Option(
        True,
        "--verbose/--quiet", "-v/-q",
        help="Show pipeline logs",
    ),
):
    """
    Solve the math problem in an image.

    The image is read and corrected automatically; solving runs unless
    --no-solve is given.
    """
    setup_logging(verbose)

    config_status = validate_config()
    if not config_status["valid"]:
        console.print("[bold red]Configuration Error:[/]")
        for issue in config_status["issues"]:
            console.print(f"  • {issue}")
        console.print("\n[dim]Please check your .env file.[/]")
        raise typer.Exit(1)

    cfg = config_status["config"]
    console.print(Panel.fit(
        f"[dim]Vision:[/] {cfg['vision_model']}\n"
        f"[dim]Correction:[/] {cfg['correction_model']}\n"
        f"[dim]Solver:[/] {cfg['solver_model']} ({cfg['solver_backend']})\n"
        f"[dim]Preprocessing:[/] {'on' if cfg['preprocessing'] else 'off'}\n"
        f"[dim]Input:[/] {image_path.name}",
        title="Configuration",
    ))

    reset_tracker()
    controller = PipelineController.from_config()

    try:
        exit_code = asyncio.run(_run(
            controller,
            image_path,
            text=text,
            expression=expression,
            auto_solve=not no_solve,
        ))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        raise typer.Exit(130)

    if get_tracker().calls:
        console.print(f"\n[dim]{get_tracker().format_summary()}[/]")

    if output:
        _write_output(output, controller)

    raise typer.Exit(exit_code)


@app.command()
def check():
    """
    Check configuration and dependencies.
    """
    console.print("[bold]Checking MathSnap Configuration...[/]\n")

    config_status = validate_config()

    if config_status["valid"]:
        console.print("[green]✓[/] API keys configured")
    else:
        console.print("[red]✗[/] Configuration issues:")
        for issue in config_status["issues"]:
            console.print(f"    • {issue}")

    console.print("\n[bold]Dependencies:[/]")

    dependencies = [
        ("google-generativeai", "google.generativeai"),
        ("openai", "openai"),
        ("Pillow", "PIL"),
        ("python-dotenv", "dotenv"),
        ("rich", "rich"),
        ("typer", "typer"),
    ]

    all_ok = True
    for name, import_name in dependencies:
        try:
            __import__(import_name)
            console.print(f"  [green]✓[/] {name}")
        except ImportError:
            console.print(f"  [red]✗[/] {name} - not installed")
            all_ok = False

    if all_ok and config_status["valid"]:
        console.print("\n[bold green]All checks passed! Ready to solve.[/]")
    else:
        console.print("\n[yellow]Some issues need attention.[/]")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print("[bold]MathSnap[/] - photo-to-solution math solver")
    console.print("[dim]Version 0.1.0[/]")


if __name__ == "__main__":
    app()
