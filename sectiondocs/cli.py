"""
Command-line interface for sectiondocs.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__
from .audit import build_audit_log
from .backend import SummarizationService, WorkflowClient
from .config import default_sections, settings
from .downloads import DirectoryDownloadSink
from .exceptions import SectionDocsError
from .export import export_report
from .jobs import FileJobRunner
from .orchestrator import HttpBackendClient, InProcessBackendClient, SectionOrchestrator
from .state import SectionStore, add_files, initial_state
from .storage import build_storage
from .types import FileEntry, Section, WorkspaceState

console = Console()

T = TypeVar("T")

LOCAL_SECTION = Section(id="local", title="Local files")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """
    sectiondocs - convert, rasterize and summarize sectioned documents.
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command(name="sections")
def list_sections():
    """
    List the document sections and their workflow endpoints.
    """
    table = Table(title="Document sections")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Endpoint", style="dim")
    for section in default_sections():
        table.add_row(section.id, section.title, section.endpoint)
    console.print(table)


def _run_file_job(
    input_path: str,
    description: str,
    job: Callable[[FileJobRunner, str], Awaitable[T]],
) -> T:
    """Run ``job`` against ``input_path`` placed in a throwaway section."""

    entry = FileEntry.from_path(input_path)
    store = SectionStore(add_files(initial_state([LOCAL_SECTION]), LOCAL_SECTION.id, [entry]))

    async def _main() -> T:
        runner = FileJobRunner(store, progress_clear_delay=0)
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(description, total=100)

            def _on_change(_old: WorkspaceState, new: WorkspaceState) -> None:
                current = new.get(LOCAL_SECTION.id)
                if not current.has_file(entry.file_id):
                    return
                event = current.file(entry.file_id).progress
                if event is not None:
                    progress.update(task, completed=event.current, description=event.message or description)

            unsubscribe = store.subscribe(_on_change)
            try:
                return await job(runner, entry.file_id)
            finally:
                unsubscribe()
                runner.close()

    return asyncio.run(_main())


def _fail(error: Exception) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {error}")
    sys.exit(1)


@cli.command(name="convert")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", "-o", default="./output", type=click.Path(file_okay=False), help="Where to save the PDF")
def convert(input_file, output_dir):
    """
    Convert an image, DOCX or text file to PDF.

    Example:

        sectiondocs convert scan.png -o converted
    """
    sink = DirectoryDownloadSink(output_dir)
    try:
        document = _run_file_job(
            input_file,
            "Converting",
            lambda runner, file_id: runner.convert(LOCAL_SECTION.id, file_id, sink=sink),
        )
    except (SectionDocsError, ValueError, OSError) as exc:
        _fail(exc)
        return
    console.print(f"\n[bold green]✓ Created {document.name} ({document.page_count} page(s))[/bold green]")
    console.print(f"[dim]Output directory: {os.path.abspath(output_dir)}[/dim]")


@cli.command(name="rasterize")
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", "-o", default="./output", type=click.Path(file_okay=False), help="Where to save the PNG pages")
def rasterize(input_pdf, output_dir):
    """
    Render every page of a PDF to PNG.
    """
    sink = DirectoryDownloadSink(output_dir)
    try:
        images = _run_file_job(
            input_pdf,
            "Rendering pages",
            lambda runner, file_id: runner.rasterize(LOCAL_SECTION.id, file_id, deliver="download", sink=sink),
        )
    except (SectionDocsError, ValueError, OSError) as exc:
        _fail(exc)
        return
    console.print(f"\n[bold green]✓ Rendered {len(images)} page(s)[/bold green]")
    for image in images[:5]:
        console.print(f"  • {image.name} ({image.width}x{image.height})")
    if len(images) > 5:
        console.print(f"  ... and {len(images) - 5} more")


@cli.command(name="extract-images")
@click.argument("input_pdf", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", "-o", default="./output", type=click.Path(file_okay=False), help="Where to save the images")
def extract_images(input_pdf, output_dir):
    """
    Save every embedded image of a PDF as PNG.
    """
    try:
        images = _run_file_job(
            input_pdf,
            "Scanning pages",
            lambda runner, file_id: runner.extract_images(LOCAL_SECTION.id, file_id),
        )
    except (SectionDocsError, ValueError, OSError) as exc:
        _fail(exc)
        return
    if not images:
        console.print("\n[yellow]No embedded images found.[/yellow]")
        return
    sink = DirectoryDownloadSink(output_dir)
    try:
        for image in images:
            sink.deliver(image.name, image.data, image.media_type)
    except OSError as exc:
        _fail(exc)
        return
    console.print(f"\n[bold green]✓ Extracted {len(images)} image(s)[/bold green]")
    console.print(f"[dim]Output directory: {os.path.abspath(output_dir)}[/dim]")


@cli.command(name="summarize")
@click.argument("section_id")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--endpoint", help="Workflow webhook URL (defaults to the section's endpoint)")
@click.option("--backend-url", default=None, help="Deployed /process-documents URL; runs in-process when omitted")
@click.option("--export", "export_format", type=click.Choice(["pdf", "docx"]), help="Also write a summary report")
@click.option("--output-dir", "-o", default="./output", type=click.Path(file_okay=False), help="Where to save the report")
def summarize(section_id, files, endpoint, backend_url, export_format, output_dir):
    """
    Upload FILES for SECTION_ID and print the workflow's summary.

    Example:

        sectiondocs summarize income paystub.pdf t4.pdf --export pdf
    """
    catalogue = {section.id: section for section in default_sections()}
    if section_id not in catalogue:
        _fail(click.BadParameter(f"unknown section '{section_id}', see `sectiondocs sections`"))
        return
    sections = list(catalogue.values())
    if endpoint:
        sections = [
            replace(s, endpoint=endpoint) if s.id == section_id else s
            for s in sections
        ]

    store = SectionStore(initial_state(sections))
    store.dispatch(add_files, section_id, [FileEntry.from_path(path) for path in files])
    backend_url = backend_url or settings.backend_url
    if backend_url:
        backend = HttpBackendClient(backend_url, api_key=settings.backend_api_key)
        service = None
    else:
        service = SummarizationService(WorkflowClient(), build_audit_log(settings))
        backend = InProcessBackendClient(service)
    orchestrator = SectionOrchestrator(store, build_storage(settings), backend)

    async def _main() -> str:
        with console.status(f"Summarizing {len(files)} file(s) for {section_id}..."):
            summary = await orchestrator.summarize_section(section_id)
        if service is not None:
            await service.drain()
        return summary

    try:
        summary = asyncio.run(_main())
    except (SectionDocsError, ValueError, OSError) as exc:
        _fail(exc)
        return

    console.print(f"\n[bold green]✓ {catalogue[section_id].title}[/bold green]")
    console.print(summary)

    if export_format:
        artifact = export_report(store.state, export_format)
        try:
            DirectoryDownloadSink(output_dir).deliver(artifact.filename, artifact.data, artifact.media_type)
        except OSError as exc:
            _fail(exc)
            return
        console.print(f"[dim]Report: {Path(output_dir).resolve() / artifact.filename}[/dim]")


@cli.command(name="serve")
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """
    Run the /process-documents API with uvicorn.
    """
    import uvicorn

    uvicorn.run("sectiondocs.api.app:app", host=host, port=port, reload=reload)


def main():
    cli()


if __name__ == "__main__":
    main()
