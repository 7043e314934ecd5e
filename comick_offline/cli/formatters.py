"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from comick_offline.models.config import SyncConfig
from comick_offline.models.entities import (
    ChapterRecord,
    ResumeDescriptor,
    Series,
    TranslatorInfo,
    TranslatorRanking,
    format_chapter_number,
)
from comick_offline.models.outcomes import SyncReport
from comick_offline.utils.formatting import (
    format_chapter_ranges,
    format_duration,
    format_size,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `comick-offline init` to create a configuration file.",
            "• Check the values in config.ini; `init --force` rewrites it.",
        ],
        "FetchError": [
            "• The comick API might be temporarily unavailable.",
            "• Check your internet connection and try again in a few minutes.",
            "• Verify the series slug in the URL of the series page.",
        ],
        "CircuitBreakerError": [
            "• Too many API failures were detected; requests are cooling down.",
            "• Check your internet connection.",
            "• Reduce `--workers` if you are being rate-limited.",
        ],
        "SeriesNotFoundError": [
            "• Run `comick-offline list` to see the series ids in your library.",
        ],
        "SeriesExistsError": [
            "• Use `comick-offline update <series-id>` to fetch new chapters.",
            "• Use `comick-offline resume <series-id>` to finish an interrupted run.",
        ],
        "ConflictError": [
            "• Re-run with `--allow-conflicts` to download them anyway.",
            "• Add the translators as backups with `comick-offline prefs`.",
        ],
        "FutureChaptersPending": [
            "• Re-run with `--yes` to download only the published chapters.",
            "• Or wait until the listed release time.",
        ],
        "SyncInterruptedError": [
            "• Run `comick-offline resume <series-id>` to continue.",
            "• Reduce `--workers` if the image host keeps dropping connections.",
        ],
        "StorageError": [
            "• Check free disk space and permissions of the library directory.",
            "• Run `comick-offline vacuum` to rebuild the database.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -v for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: SyncConfig):
    """Displays the effective configuration."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    for key in sorted(SyncConfig.get_ini_keys()):
        table.add_row(f"{key}:", str(getattr(config, key)))
    table.add_row("library:", f"[dim]{config.library_path}[/dim]")

    console.print(
        Panel(
            table,
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_translator_table(title: str, translators: list[TranslatorInfo]):
    """Lists translators with chapter counts and ranges."""
    console = Console()
    table = Table(title=f"Translators of {escape(title)}", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Translator", style="cyan")
    table.add_column("Chapters", justify="right", style="green")
    table.add_column("Latest", justify="right")
    table.add_column("Ranges", style="dim")
    for i, info in enumerate(translators, 1):
        table.add_row(
            str(i),
            escape(info.name),
            str(len(info.chapters)),
            format_chapter_number(info.latest_chapter),
            format_chapter_ranges(info.chapters),
        )
    console.print(table)


def print_series_table(series_list: list[Series], pending: set[str] | None = None):
    """Lists the series in the library."""
    console = Console()
    if not series_list:
        console.print("[dim]The library is empty.[/dim]")
        return

    pending = pending or set()
    table = Table(title="Library", box=box.ROUNDED)
    table.add_column("Id", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Chapters", justify="right", style="green")
    table.add_column("Translator")
    table.add_column("Last read", justify="right")
    table.add_column("Updated", style="dim")
    for series in series_list:
        downloaded = f"{len(series.downloaded_chapters)}/{series.total_chapters}"
        if series.id in pending:
            downloaded += " [yellow](resumable)[/yellow]"
        last_read = (
            series.last_read_chapter.chapter_number if series.last_read_chapter else "-"
        )
        table.add_row(
            series.id,
            escape(series.title),
            downloaded,
            escape(series.translator_preferences.primary),
            last_read,
            f"{series.last_updated:%Y-%m-%d %H:%M}",
        )
    console.print(table)


def print_preferences(series: Series):
    console = Console()
    prefs = series.translator_preferences
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Primary:", f"[green]{escape(prefs.primary)}[/green]")
    table.add_row(
        "Backups:", escape(", ".join(prefs.backups)) if prefs.backups else "[dim]none[/dim]"
    )
    table.add_row(
        "Backup override:", "✓ Enabled" if prefs.allow_backup_override else "✗ Disabled"
    )
    if series.min_chapter is not None:
        table.add_row("Starting chapter:", format_chapter_number(series.min_chapter))
    console.print(
        Panel(
            table,
            title=f"[bold]{escape(series.title)}[/bold] translator preferences",
            border_style="cyan",
            expand=False,
        )
    )


def print_rankings_table(rankings: list[TranslatorRanking]):
    console = Console()
    if not rankings:
        console.print(
            "[dim]No translator ranking yet. Download a series, then run "
            "`comick-offline rankings --refresh`.[/dim]"
        )
        return
    table = Table(title="Global translator ranking", box=box.ROUNDED)
    table.add_column("Priority", justify="right", style="dim")
    table.add_column("Translator", style="cyan")
    table.add_column("Enabled", justify="center")
    for ranking in sorted(rankings, key=lambda r: r.priority):
        table.add_row(
            str(ranking.priority),
            escape(ranking.name),
            "[green]✓[/green]" if ranking.is_enabled else "[red]✗[/red]",
        )
    console.print(table)


def print_conflicts(series_title: str, conflicts: list[ChapterRecord]):
    console = Console()
    table = Table(
        title=f"New chapters of {escape(series_title)} from other translators",
        box=box.ROUNDED,
    )
    table.add_column("Chapter", justify="right")
    table.add_column("Translator", style="yellow")
    for record in conflicts:
        table.add_row(record.chap or "?", escape(record.translator))
    console.print(table)


def print_resume_hint(descriptor: ResumeDescriptor):
    console = Console()
    completed = format_chapter_ranges(descriptor.completed_chapters)
    remaining = format_chapter_ranges(
        r.number for r in descriptor.remaining if r.number is not None
    )
    console.print(
        Panel(
            f"Completed: [green]{completed}[/green]\n"
            f"Remaining: [yellow]{remaining}[/yellow]\n\n"
            f"Continue with [cyan]comick-offline resume {descriptor.series_id}[/cyan]",
            title=f"[bold yellow]Run {descriptor.kind}[/bold yellow]",
            border_style="yellow",
            expand=False,
        )
    )


def print_stats_table(stats_data: dict[str, Any]):
    """Displays library statistics."""
    console = Console()
    console.print(
        f"\n[bold]Series:[/] [green]{stats_data['series']}[/green]  "
        f"[bold]Chapters:[/] [green]{stats_data['chapters']}[/green]  "
        f"[bold]Pages:[/] [green]{stats_data['images']}[/green] "
        f"([cyan]{format_size(stats_data['total_size'])}[/cyan])"
    )
    if stats_data.get("pending_resumes"):
        console.print(
            f"[yellow]{stats_data['pending_resumes']} interrupted run(s) can be resumed.[/yellow]"
        )
    console.print()

    if top_series := stats_data.get("top_series"):
        table = Table(title="Top 10 Series")
        table.add_column("Rank", style="dim")
        table.add_column("Series", style="cyan")
        table.add_column("Chapters", justify="right", style="green")
        for i, (title, count) in enumerate(top_series, 1):
            table.add_row(str(i), escape(title or "?"), str(count))
        console.print(table)
    else:
        console.print("[dim]No series in the library yet.[/dim]")


def print_summary_panel(report: SyncReport, duration_s: float, progress_stats: dict | None = None):
    """Displays the final summary of a run."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=18)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Chapters:", f"[bold green]{report.chapter_count}[/bold green]")
    if report.completed_chapters:
        stats_table.add_row("Range:", format_chapter_ranges(report.completed_chapters))
    if report.skipped_future:
        stats_table.add_row(
            "○ Not yet published:",
            f"[yellow]{len(report.skipped_future)}[/yellow]",
        )
    if progress_stats:
        stats_table.add_row("Pages:", f"[cyan]{progress_stats.get('pages_done', 0)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    console.print()
    console.print(
        Panel(
            stats_table,
            title=f"📚 [bold]{escape(report.title)}[/bold]",
            border_style="green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
