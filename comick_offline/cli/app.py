"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from comick_offline import __version__
from comick_offline.api.client import ComickAPIClient
from comick_offline.core.rankings import (
    default_rankings,
    merge_new_translators,
    move_translator,
    preferences_from_rankings,
    toggle_translator,
)
from comick_offline.core.sync_controller import SyncController
from comick_offline.exceptions import (
    FutureChaptersPending,
    SeriesNotFoundError,
    SyncInterruptedError,
)
from comick_offline.models.config import SyncConfig
from comick_offline.models.entities import TranslatorInfo, TranslatorPreferences
from comick_offline.models.outcomes import FutureChaptersNotice
from comick_offline.storage.config_manager import ConfigManager
from comick_offline.storage.library import LibraryStore
from comick_offline.storage.rankings_store import RankingsStore

from .formatters import (
    print_config,
    print_conflicts,
    print_preferences,
    print_rankings_table,
    print_resume_hint,
    print_series_table,
    print_stats_table,
    print_summary_panel,
    print_translator_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("comick_offline")

app = typer.Typer(
    name="comick-offline",
    help=(
        "Download comic series from comick for offline reading and keep them up"
        " to date. Use 'comick-offline <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "comick-offline"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(require_file: bool = False, **cli_options) -> SyncConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options, require_file=require_file)


def _open_library(config: SyncConfig) -> LibraryStore:
    return LibraryStore(Path(config.library_path))


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (debug output).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """comick offline reader CLI"""
    if version:
        console.print(f"[bold]comick-offline[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("comick_offline").setLevel("DEBUG" if verbose >= 1 else "INFO")

    if show_config:
        print_config(CONFIG_FILE, _load_config())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    workers: int = typer.Option(8, "--workers", "-w", help="Concurrent page downloads."),
    language: str = typer.Option("en", "--language", "-l", help="Chapter language code."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    ConfigManager(CONFIG_FILE).save_new_config(
        {"max_workers": workers, "language": language}
    )
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print(
        "Ready to download! Try: [cyan]comick-offline download <series-slug>[/cyan]"
    )


def _confirm_future(
    progress_manager: ProgressManager, assume_yes: bool
):
    def confirm(notice: FutureChaptersNotice) -> bool:
        if assume_yes:
            console.print(f"[yellow]⚠️  {escape(notice.message)}[/yellow]")
            return True
        with progress_manager.paused():
            console.print(f"[yellow]⚠️  {escape(notice.message)}[/yellow]")
            return typer.confirm("Download the available chapters only?", default=True)

    return confirm


@asynccontextmanager
async def _sync_session(
    config: SyncConfig, assume_yes: bool, title: str
) -> AsyncIterator[tuple[SyncController, ProgressManager, LibraryStore]]:
    """
    Opens the API client, library and live display for one run and routes
    SIGINT to the controller's cancel().
    """
    store = _open_library(config)
    async with (
        ComickAPIClient(config.api_base_url, config.max_workers) as api_client,
        ProgressManager(console, title=title) as progress_manager,
    ):
        controller = SyncController(
            config,
            api_client,
            store,
            progress_callback=progress_manager,
            confirm_future=_confirm_future(progress_manager, assume_yes),
        )
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, controller.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False
        try:
            yield controller, progress_manager, store
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)


def _default_preferences(translators: list[TranslatorInfo]) -> TranslatorPreferences:
    ranked = sorted(translators, key=lambda t: (-len(t.chapters), t.name))
    if not ranked:
        return TranslatorPreferences(primary="Unknown")
    return TranslatorPreferences(
        primary=ranked[0].name, backups=[t.name for t in ranked[1:]]
    )


def _report_interruption(e: SyncInterruptedError) -> None:
    console.print(f"[bold yellow]{escape(str(e))}[/bold yellow]")
    print_resume_hint(e.descriptor)
    raise typer.Exit(code=1) from e


@app.command()
def translators(
    slug: str = typer.Argument(..., help="Series slug, as in the series page URL."),
):
    """List the translators of a series and the chapters each has released."""

    async def _translators():
        config = _load_config()
        async with ComickAPIClient(config.api_base_url, config.max_workers) as api_client:
            controller = SyncController(config, api_client, _open_library(config))
            infos = await controller.fetch_translator_info(slug)
        print_translator_table(slug, infos)

    asyncio.run(_translators())


@app.command(name="download")
def download_command(
    slug: str = typer.Argument(..., help="Series slug, as in the series page URL."),
    primary: Optional[str] = typer.Option(
        None, "--primary", "-p", help="Preferred translator."
    ),
    backups: Optional[list[str]] = typer.Option(  # noqa: B008
        None, "--backup", "-b", help="Backup translator; repeat in order of preference."
    ),
    no_override: bool = typer.Option(
        False, "--no-override", help="Never let backup translators fill gaps."
    ),
    use_rankings: bool = typer.Option(
        False, "--rankings", help="Use the global translator ranking as preferences."
    ),
    min_chapter: Optional[float] = typer.Option(
        None, "--from", help="Skip chapters numbered below this one."
    ),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Concurrent page downloads for this run."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip unpublished chapters without asking."
    ),
):
    """Download a series that is not yet in the library."""
    config = _load_config(require_file=True, max_workers=workers)

    async def _download_async():
        async with _sync_session(config, yes, slug) as (controller, progress, _):
            if use_rankings:
                preferences = preferences_from_rankings(RankingsStore(CONFIG_DIR).load())
            elif primary:
                preferences = TranslatorPreferences(
                    primary=primary,
                    backups=backups or [],
                    allow_backup_override=not no_override,
                )
            else:
                preferences = _default_preferences(
                    await controller.fetch_translator_info(slug)
                )
                preferences.allow_backup_override = not no_override
            log.info(f"Primary translator: [cyan]{escape(preferences.primary)}[/cyan]")

            start_time = time.monotonic()
            report = await controller.download_series(slug, preferences, min_chapter)
            return report, time.monotonic() - start_time, progress.get_statistics()

    try:
        report, duration, progress_stats = asyncio.run(_download_async())
    except SyncInterruptedError as e:
        _report_interruption(e)
    print_summary_panel(report, duration, progress_stats)


async def _update_each(controller, targets, stop_on_error: bool, **options):
    """
    Updates each series in turn. Unless ``stop_on_error`` is set, a series
    that waits on unpublished chapters or ends interrupted is logged and
    skipped so the remaining ones still update. Cancellation always stops.
    """
    results = []
    skipped = []
    for series in targets:
        if controller.cancelled:
            break
        try:
            result = await controller.update_series(series.id, **options)
        except (FutureChaptersPending, SyncInterruptedError) as e:
            if stop_on_error or controller.cancelled:
                raise
            log.warning(f"[yellow]{escape(series.title)}: {escape(str(e))}[/yellow]")
            skipped.append((series, e))
            continue
        results.append((series, result))
    return results, skipped


@app.command()
def update(
    series_id: Optional[str] = typer.Argument(
        None, help="Series id from `list`. Updates every series if omitted."
    ),
    allow_conflicts: bool = typer.Option(
        False,
        "--allow-conflicts",
        help="Download new chapters even from translators outside the preferences.",
    ),
    min_chapter: Optional[float] = typer.Option(
        None, "--from", help="Skip chapters numbered below this one."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip unpublished chapters without asking."
    ),
):
    """Download chapters released since the last run."""
    config = _load_config(require_file=True)

    async def _update_async():
        async with _sync_session(config, yes, series_id or "library") as (
            controller,
            _,
            store,
        ):
            targets = (
                [await store.require_series(series_id)]
                if series_id
                else await store.get_all_series()
            )
            return await _update_each(
                controller,
                targets,
                stop_on_error=series_id is not None,
                skip_conflict_warning=allow_conflicts,
                min_chapter=min_chapter,
            )

    try:
        results, skipped = asyncio.run(_update_async())
    except SyncInterruptedError as e:
        _report_interruption(e)

    conflicted = False
    for series, result in results:
        if result.conflicts:
            conflicted = True
            print_conflicts(series.title, result.conflicts)
        elif result.new_chapters:
            console.print(
                f"[green]✓ {escape(series.title)}: {result.new_chapters} new chapter(s).[/green]"
            )
        else:
            console.print(f"[dim]{escape(series.title)}: up to date.[/dim]")
    for series, error in skipped:
        console.print(f"[yellow]{escape(series.title)}: skipped.[/yellow]")
        if isinstance(error, SyncInterruptedError):
            print_resume_hint(error.descriptor)
    if conflicted and series_id:
        results[0][1].raise_for_conflicts()
    if skipped:
        raise typer.Exit(code=1)


@app.command()
def resume(
    series_id: str = typer.Argument(..., help="Series id of the interrupted run."),
    min_chapter: Optional[float] = typer.Option(
        None, "--from", help="Skip chapters numbered below this one."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip unpublished chapters without asking."
    ),
):
    """Continue an interrupted download."""
    config = _load_config(require_file=True)

    async def _resume_async():
        async with _sync_session(config, yes, series_id) as (controller, progress, store):
            descriptor = await store.get_resume_state(series_id)
            if descriptor is None:
                raise SeriesNotFoundError(
                    f"No interrupted run is recorded for series '{series_id}'."
                )
            start_time = time.monotonic()
            report = await controller.resume_download(descriptor, min_chapter)
            return report, time.monotonic() - start_time, progress.get_statistics()

    try:
        report, duration, progress_stats = asyncio.run(_resume_async())
    except SyncInterruptedError as e:
        _report_interruption(e)
    print_summary_panel(report, duration, progress_stats)


@app.command(name="list")
def list_command():
    """List the series in the library."""

    async def _list():
        store = _open_library(_load_config())
        series_list = await store.get_all_series()
        pending = {d.series_id for d in await store.list_resume_states()}
        print_series_table(series_list, pending)

    asyncio.run(_list())


@app.command()
def delete(
    series_id: str = typer.Argument(..., help="Series id from `list`."),
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the confirmation prompt."),
):
    """Delete a series with all its chapters and pages."""

    async def _delete():
        store = _open_library(_load_config())
        series = await store.require_series(series_id)
        if not force and not typer.confirm(
            f"Delete '{series.title}' and all {len(series.downloaded_chapters)} "
            "downloaded chapter(s)?"
        ):
            console.print("[yellow]Operation cancelled.[/yellow]")
            raise typer.Abort()
        removed = await store.delete_series(series_id)
        console.print(
            f"[green]✓ Deleted {escape(series.title)} ({removed} page file(s)).[/green]"
        )

    asyncio.run(_delete())


@app.command()
def prefs(
    series_id: str = typer.Argument(..., help="Series id from `list`."),
    primary: Optional[str] = typer.Option(None, "--primary", "-p", help="Preferred translator."),
    backups: Optional[list[str]] = typer.Option(  # noqa: B008
        None, "--backup", "-b", help="Backup translator; repeat in order of preference."
    ),
    override: Optional[bool] = typer.Option(
        None, "--override/--no-override", help="Let backup translators fill gaps."
    ),
    use_rankings: bool = typer.Option(
        False, "--rankings", help="Replace the preferences with the global ranking."
    ),
):
    """Show or change the translator preferences of a series."""

    async def _prefs():
        store = _open_library(_load_config())
        series = await store.require_series(series_id)
        current = series.translator_preferences
        if use_rankings:
            updated = preferences_from_rankings(RankingsStore(CONFIG_DIR).load())
        elif primary is None and backups is None and override is None:
            print_preferences(series)
            return
        else:
            updated = TranslatorPreferences(
                primary=primary or current.primary,
                backups=backups if backups is not None else current.backups,
                allow_backup_override=(
                    override if override is not None else current.allow_backup_override
                ),
            )
        series = await store.update_translator_preferences(series_id, updated)
        console.print("[green]✓ Preferences updated.[/green]")
        print_preferences(series)

    asyncio.run(_prefs())


@app.command()
def rankings(
    refresh: bool = typer.Option(
        False, "--refresh", help="Add translators found in the library to the ranking."
    ),
    reset: bool = typer.Option(
        False, "--reset", help="Rebuild the ranking from the library by chapter count."
    ),
    up: Optional[str] = typer.Option(None, "--up", help="Move a translator up."),
    down: Optional[str] = typer.Option(None, "--down", help="Move a translator down."),
    toggle: Optional[str] = typer.Option(
        None, "--toggle", help="Enable or disable a translator."
    ),
):
    """Show or edit the global translator ranking."""
    rankings_store = RankingsStore(CONFIG_DIR)

    async def _rankings():
        current = rankings_store.load()
        changed = False
        if reset or refresh:
            series_list = await _open_library(_load_config()).get_all_series()
            current = (
                default_rankings(series_list)
                if reset
                else merge_new_translators(series_list, current)
            )
            changed = True
        if up:
            current = move_translator(current, up, "up")
            changed = True
        if down:
            current = move_translator(current, down, "down")
            changed = True
        if toggle:
            current = toggle_translator(current, toggle)
            changed = True
        if changed:
            rankings_store.save(current)
            console.print("[green]✓ Ranking saved.[/green]")
        print_rankings_table(current)

    asyncio.run(_rankings())


@app.command()
def stats():
    """Show statistics of the library."""

    async def _get_stats():
        store = _open_library(_load_config())
        print_stats_table(await store.get_stats())

    asyncio.run(_get_stats())


@app.command()
def vacuum():
    """Optimize the library database."""

    async def _vacuum():
        console.print("[cyan]Optimizing library database...[/cyan]")
        await _open_library(_load_config()).vacuum()
        console.print("[green]✓ Database optimized.[/green]")

    asyncio.run(_vacuum())
