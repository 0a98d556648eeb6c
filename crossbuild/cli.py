"""Thin CLI wrapper for crossbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from crossbuild import __version__
from crossbuild.config import get_settings, print_settings_json
from crossbuild.errors import CrossBuildError
from crossbuild.manifest.schema import ManifestSchema

app = typer.Typer(
    name="crossbuild",
    help="Cross-build orchestrator - fetch, build in dependency order, assemble images",
    no_args_is_help=True,
)
console = Console()

ManifestArg = Annotated[
    Path, typer.Argument(help="Path to the package manifest (.json, .yaml, .yml)")
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"crossbuild version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Cross-build orchestrator - fetch, build in dependency order, assemble images."""
    level = "DEBUG" if verbose else get_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(error: CrossBuildError) -> typer.Exit:
    console.print(f"[red]Error ({error.code}): {escape(str(error))}[/red]")
    return typer.Exit(code=1)


def _load(path: Path) -> ManifestSchema:
    from crossbuild.manifest.io import load_manifest

    try:
        return load_manifest(path)
    except CrossBuildError as e:
        raise _fail(e) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    timeout_display = (
        str(settings.build_timeout) if settings.build_timeout else "(none)"
    )
    workers_display = (
        str(settings.max_concurrent_downloads)
        if settings.max_concurrent_downloads
        else "(one per package)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Log directory:       {settings.log_dir}")
    console.print(f"  Image directory:     {settings.image_dir}")
    console.print(f"  Image output:        {settings.image_output}")
    console.print()
    console.print("[bold]Sources:[/bold]")
    console.print(f"  GitHub API:          {settings.github_api_url}")
    console.print(f"  Archive host:        {settings.github_archive_base}")
    console.print(f"  Token configured:    {bool(settings.github_token)}")
    console.print(f"  Verify cached:       {settings.verify_cached_sources}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Max downloads:       {workers_display}")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build step timeout:  {timeout_display}")


@app.command()
def order(
    manifest_path: ManifestArg,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the build order of a manifest."""
    from crossbuild.builds.order import compute_priorities, create_order
    from crossbuild.manifest.io import packages_by_name

    manifest = _load(manifest_path)
    packages = packages_by_name(manifest)

    try:
        graph = compute_priorities(packages)
        sequence = create_order(packages)
    except CrossBuildError as e:
        raise _fail(e) from None

    if json_output:
        output = [
            {"name": p.name, "priority": graph[p.name].priority, "depends": p.depends}
            for p in sequence
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"[bold]Build order ({len(sequence)} package(s)):[/bold]")
    for index, package in enumerate(sequence, start=1):
        depends = ", ".join(package.depends) or "-"
        console.print(
            f"  {index:>3}. [green]{package.name}[/green] "
            f"(priority {graph[package.name].priority}; depends: {depends})"
        )


@app.command()
def fetch(manifest_path: ManifestArg) -> None:
    """Download and extract the sources of every package."""
    from crossbuild.manifest.io import packages_by_name
    from crossbuild.sources.service import acquire_sources

    manifest = _load(manifest_path)
    settings = get_settings()

    try:
        sources = acquire_sources(
            list(packages_by_name(manifest).values()),
            settings,
            token=manifest.oauth_token,
        )
    except CrossBuildError as e:
        raise _fail(e) from None

    console.print(f"[green]Sources ready for {len(sources)} package(s):[/green]")
    for name, path in sources.items():
        console.print(f"  {name}: {path}")


@app.command()
def run(
    manifest_path: ManifestArg,
    no_configure: Annotated[
        bool,
        typer.Option("--no-configure", "--nc", help="Skip configure steps"),
    ] = False,
    no_build: Annotated[
        bool,
        typer.Option("--no-build", "--nb", help="Skip build and install steps"),
    ] = False,
    no_image: Annotated[
        bool,
        typer.Option("--no-image", help="Skip image assembly"),
    ] = False,
    only: Annotated[
        list[str] | None,
        typer.Option("--package", "-p", help="Only build these packages (repeatable)"),
    ] = None,
) -> None:
    """Fetch sources, build every package in order, and assemble the image."""
    from crossbuild.builds.order import create_order, select_packages
    from crossbuild.builds.runner import run_pipeline
    from crossbuild.image.assemble import assemble_image
    from crossbuild.manifest.io import packages_by_name
    from crossbuild.sources.service import acquire_sources

    manifest = _load(manifest_path)
    settings = get_settings()

    try:
        sequence = create_order(packages_by_name(manifest))
        if only:
            sequence = select_packages(sequence, only)

        console.print("[blue]Acquiring sources...[/blue]")
        sources = acquire_sources(sequence, settings, token=manifest.oauth_token)

        if not (no_configure and no_build):
            console.print(f"[blue]Building {len(sequence)} package(s)...[/blue]")
            results = run_pipeline(
                sequence,
                sources,
                settings,
                configure=not no_configure,
                build=not no_build,
            )
            for result in results:
                console.print(
                    f"  [green]✓ {result.name}[/green] "
                    f"({len(result.steps)} step(s), log: {result.log_path})"
                )

        if not no_image and manifest.image_settings is not None:
            console.print("[blue]Assembling image...[/blue]")
            image = assemble_image(manifest.image_settings, settings)
            console.print(
                f"[green]Image {image.output} with {len(image.closure.executables)} "
                f"executable(s) and {len(image.closure.libraries)} librar(ies)[/green]"
            )
    except CrossBuildError as e:
        raise _fail(e) from None

    console.print("[green]All done![/green]")


@app.command()
def image(
    manifest_path: ManifestArg,
    no_package: Annotated[
        bool,
        typer.Option("--no-package", help="Assemble the tree without packaging it"),
    ] = False,
) -> None:
    """Assemble the runtime image from completed build outputs."""
    from crossbuild.image.assemble import assemble_image

    manifest = _load(manifest_path)
    if manifest.image_settings is None:
        console.print("[red]Manifest has no image_settings[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    try:
        result = assemble_image(
            manifest.image_settings, settings, package=not no_package
        )
    except CrossBuildError as e:
        raise _fail(e) from None

    console.print(f"[bold]Image tree:[/bold] {result.image_root}")
    console.print(f"  Executables: {len(result.closure.executables)}")
    console.print(f"  Libraries:   {len(result.closure.libraries)}")
    if result.closure.skipped:
        console.print(
            f"  [yellow]Skipped (unreadable metadata): {len(result.closure.skipped)}[/yellow]"
        )
    console.print(f"  Manifest:    {result.manifest_path}")
    if result.output is not None:
        console.print(f"  [green]Packaged: {result.output}[/green]")


@app.command()
def clean() -> None:
    """Delete all downloaded sources and cached validation tokens."""
    from crossbuild.sources.cache import clean as clean_cache

    removed = clean_cache(get_settings())
    if not removed:
        console.print("[yellow]Nothing to clean[/yellow]")
        return
    for directory in removed:
        console.print(f"  removed {directory}")
    console.print("[green]All clean![/green]")


if __name__ == "__main__":
    app()
