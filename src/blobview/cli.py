"""Command-line interface for blobview."""

import asyncio
import logging
from pathlib import Path

import click
import yaml

from . import __version__
from .classify import (
    PDF_SIGNATURE,
    Classification,
    classify_by_bytes,
    classify_by_type,
    detect_type,
)
from .config import (
    CONFIG_FILENAME,
    BlobviewConfig,
    config_to_dict,
    create_default_config,
    find_config_file,
    load_config,
)
from .errors import BlobviewError
from .host import (
    BlobStore,
    DirectoryNavigator,
    InlineBlobReader,
    LoopClock,
    SoupDocument,
)
from .ports import HostPorts, UserEvent
from .registry import Blob
from .session import install
from .watcher import find_qualifying, reference_of


@click.group()
@click.version_option(version=__version__, prog_name="blobview")
@click.option("-v", "--verbose", is_flag=True, help="Log pipeline activity")
def main(verbose):
    """Open PDFs behind ephemeral blob: references in a viewer.

    blobview tracks blob: references as they are created, resolves the
    ones that name PDFs and writes a viewer document for them, falling
    back to a direct link when the viewer cannot show the content.

    \b
    Quick start:
      blobview config init           # Create .blobview.yaml
      blobview classify report.pdf   # Would this be treated as a PDF?
      blobview view report.pdf       # Run the click pipeline on a file
      blobview scan page.html        # List blob: references in a page
    """
    if verbose:
        _enable_logging()


def _enable_logging() -> None:
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("blobview").setLevel(logging.DEBUG)


@main.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
def classify(files):
    """Classify files the way references to them would be classified.

    The type label (guessed from the file name) decides first; a missing
    or generic label falls back to the file's first bytes.
    """
    if not files:
        raise click.UsageError("No files specified")

    for file_str in files:
        path = Path(file_str)
        label = detect_type(path)
        verdict = classify_by_type(label)
        if verdict is Classification.UNKNOWN:
            try:
                with open(path, "rb") as f:
                    verdict = classify_by_bytes(f.read(len(PDF_SIGNATURE)))
            except OSError as e:
                click.echo(f"Warning: Cannot read {path}: {e}", err=True)
                continue
        click.echo(f"{verdict.name:<8} {_relative_path(path)} ({label})")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "-o",
    "--output",
    "output_dir",
    type=click.Path(file_okay=False),
    help="Directory for viewer documents (default: _blobview/)",
)
@click.option("--label", help="File name shown in the viewer (default: file name)")
@click.option(
    "--launch/--no-launch",
    default=False,
    help="Open written documents in the system browser",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def view(file, output_dir, label, launch, config_path):
    """Run the click pipeline for a file and write the viewer.

    The file is registered as a blob: reference, linked from an anchor,
    and the anchor is clicked. Whatever the pipeline produces (viewer,
    labelled fallback, or nothing for non-PDFs) lands in the output
    directory.

    \b
    Examples:
      blobview view report.pdf
      blobview view scan.bin --label scan.pdf -o out/
      blobview view report.pdf --launch
    """
    try:
        cfg = load_config(config_path=Path(config_path) if config_path else None)
    except BlobviewError as e:
        raise click.ClickException(str(e))
    if cfg.debug:
        _enable_logging()

    path = Path(file)
    if output_dir is None:
        output_dir = "_blobview"
        click.echo(f"Writing to {output_dir}/ (use -o to change)")

    try:
        data = path.read_bytes()
    except OSError as e:
        raise click.ClickException(f"Cannot read {path}: {e}")

    navigator = DirectoryNavigator(Path(output_dir), launch=launch)
    blob = Blob(data, detect_type(path))
    try:
        intercepted = asyncio.run(_run_view(cfg, navigator, blob, label or path.name))
    except BlobviewError as e:
        raise click.ClickException(str(e))

    if not intercepted:
        click.echo(f"Not a PDF, nothing intercepted: {_relative_path(path)}")
        return

    for written in navigator.written:
        click.echo(f"Wrote: {_relative_path(written)}")
    for url in navigator.navigations:
        click.echo(f"Navigated directly: {url[:80]}")


async def _run_view(
    cfg: BlobviewConfig, navigator: DirectoryNavigator, blob: Blob, label: str
) -> bool:
    store = BlobStore("null")
    document = SoupDocument()
    ports = HostPorts(
        allocator=store,
        reader=InlineBlobReader(),
        fetcher=store,
        document=document,
        navigator=navigator,
        clock=LoopClock(),
    )
    interceptor = install(cfg, ports)

    reference = interceptor.create_object_url(blob)
    anchor = document.new_tag("a", {"href": reference, "download": label}, text=label)
    document.insert(anchor)

    event = UserEvent("click", anchor)
    interceptor.on_click(event)
    await interceptor.session.drain()
    interceptor.on_unload()
    interceptor.revoke_object_url(reference)
    return event.default_prevented


@main.command()
@click.argument("page", type=click.Path(exists=True, dir_okay=False))
def scan(page):
    """List blob: references in an HTML page.

    Anchors are handled when clicked; frames, embeds and objects when
    they are inserted shortly after a user interaction.
    """
    try:
        document = SoupDocument.from_path(Path(page))
    except OSError as e:
        raise click.ClickException(f"Cannot read {page}: {e}")

    found = find_qualifying(document.root)
    if not found:
        click.echo("No blob: references found")
        return

    for element in found:
        trigger = "click" if element.name == "a" else "insertion"
        click.echo(f"{trigger:<10} <{element.name}> {reference_of(element)}")
    click.echo(f"\n{len(found)} reference(s) found")


@main.group()
def config():
    """Manage blobview configuration."""
    pass


@config.command("init")
@click.option(
    "-d",
    "--directory",
    type=click.Path(),
    default=".",
    help="Directory to create config in",
)
def config_init(directory):
    """Create a new .blobview.yaml configuration file."""
    try:
        config_path = create_default_config(Path(directory))
        click.echo(f"Created: {config_path}")
    except BlobviewError as e:
        raise click.ClickException(str(e))


@config.command("show")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def config_show(config_path):
    """Display current configuration.

    Shows merged configuration from file, environment, and defaults.
    """
    try:
        cfg = load_config(config_path=Path(config_path) if config_path else None)
        data = config_to_dict(cfg)
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
    except BlobviewError as e:
        raise click.ClickException(str(e))


@config.command("where")
@click.option(
    "-d",
    "--directory",
    type=click.Path(exists=True),
    help="Directory to search from",
)
def config_where(directory):
    """Show which config file would be used.

    Searches up the directory tree for .blobview.yaml.
    """
    start = Path(directory) if directory else Path.cwd()
    config_path = find_config_file(start)

    if config_path:
        click.echo(f"Config file: {config_path}")
    else:
        click.echo(f"No {CONFIG_FILENAME} found (searched from {start})")


def _relative_path(path: Path) -> str:
    """Get a relative path for display."""
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main()
