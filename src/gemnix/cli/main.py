import logging
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from ..config import ConvertOptions
from ..domain.errors import GemnixError
from ..services.bundle import BundleService
from ..services.convert import ConvertService
from ..ui.progress import ProgressManager

app = typer.Typer(add_completion=False)
console = Console(stderr=True)


def configure_logging(quiet: bool):
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def version_callback(value: bool):
    if not value:
        return
    try:
        console.print(package_version("gemnix"))
    except PackageNotFoundError:
        console.print("unknown")
    raise typer.Exit()


@app.command()
def main(
    magic: bool = typer.Option(False, "--magic", "-m", help="lock, pack, and write dependencies"),
    ruby: str = typer.Option("ruby", help="ruby to use for magic and Gemfile evaluation"),
    bundle_pack_path: Path = typer.Option(Path("vendor/bundle"), help="path to pack the magic"),
    gemset: Path = typer.Option(Path("gemset.nix"), help="path to the gemset.nix"),
    lockfile: Path = typer.Option(Path("Gemfile.lock"), help="path to the Gemfile.lock"),
    gemfile: Path = typer.Option(Path("Gemfile"), help="path to the Gemfile"),
    lock: bool = typer.Option(False, "--lock", "-l", help="generate Gemfile.lock first"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="only output errors"),
    jobs: int = typer.Option(8, "--jobs", "-j", min=1, help="concurrent downloads"),
    eval_gemfile: bool = typer.Option(
        True, "--eval-gemfile/--no-eval-gemfile",
        help="ask bundler for groups and platforms; without it every gem is in the default group",
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True, help="show the version of gemnix"
    ),
):
    """convert a Gemfile.lock into a gemset.nix for bundlerEnv."""
    configure_logging(quiet)
    options = ConvertOptions(
        gemfile=gemfile,
        lockfile=lockfile,
        gemset=gemset,
        bundle_pack_path=bundle_pack_path,
        ruby=ruby,
        jobs=jobs,
        quiet=quiet,
        eval_gemfile=eval_gemfile,
    )
    progress_manager = ProgressManager(console, enabled=False if quiet else None)

    try:
        bundle = BundleService(options)
        if magic:
            bundle.magic()
        if lock:
            bundle.lock()

        service = ConvertService(options, progress_manager=progress_manager)
        path = service.run()
    except GemnixError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if not quiet:
        progress_manager.print(f"[green]Wrote {path}[/green]")


if __name__ == "__main__":
    app()
