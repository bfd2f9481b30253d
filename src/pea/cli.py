"""pea - prompt-engineering assistant CLI."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pea import __version__
from pea.config import default_db_path
from pea.database import close_session, init_db, open_session
from pea.schemas.diff import DiffKind, DiffSegment
from pea.services.diff_service import diff as compute_diff
from pea.services.diff_service import summarize
from pea.services.version_service import VersionGrouper
from pea.store import SqlKeyValueStore


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _version_callback(value: bool) -> None:
    if value:
        print(f"pea {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="pea",
    help="pea: diff prompt improvements and keep their version history.",
    add_completion=False,
    no_args_is_help=True,
)
history_app = typer.Typer(
    help="Browse and edit the grouped history of improved prompts.",
    no_args_is_help=True,
)
app.add_typer(history_app, name="history")


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
    log_level: Annotated[
        LogLevel,
        typer.Option(
            "--log-level",
            envvar="PEA_LOG_LEVEL",
            case_sensitive=False,
            help="Logging level.",
        ),
    ] = LogLevel.WARNING,
) -> None:
    """pea: diff prompt improvements and keep their version history."""
    logging.basicConfig(
        level=log_level.value,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


console = Console()

DbOption = Annotated[
    Path | None,
    typer.Option("--db", envvar="PEA_DB", help="Override path to SQLite database."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON.")]

_STYLES = {
    DiffKind.UNCHANGED: "",
    DiffKind.ADDED: "bold green",
    DiffKind.REMOVED: "red strike",
}


def _db_path(db: Path | None) -> Path:
    return db if db is not None else default_db_path()


def _get_grouper(db: Path | None) -> tuple[VersionGrouper, Session]:
    """Return (grouper, session) with the stored history loaded."""
    session = open_session(_db_path(db))
    grouper = VersionGrouper(SqlKeyValueStore(session))
    grouper.load()
    return grouper, session


def _commit(grouper: VersionGrouper, session: Session) -> None:
    """Commit the grouper's writes; roll back and exit 1 if any of them failed."""
    error = grouper.save_error
    if error is None:
        try:
            session.commit()
            return
        except SQLAlchemyError as exc:
            error = exc
    session.rollback()
    rprint(f"[red]Error:[/red] Could not save version history: {escape(str(error))}")
    raise typer.Exit(1)


def _resolve_group_id(grouper: VersionGrouper, group: str) -> str:
    """Accept a full group id or a unique prefix of one."""
    matches = [g.id for g in grouper.groups if g.id.startswith(group)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ValueError(f"Version group '{group}' not found.")
    raise ValueError(f"Group id prefix '{group}' is ambiguous.")


def _render_diff(segments: list[DiffSegment]) -> Text:
    text = Text()
    for segment in segments:
        text.append(segment.text, style=_STYLES[segment.kind])
    return text


def _segments_json(segments: list[DiffSegment]) -> list[dict]:
    return [segment.model_dump(mode="json") for segment in segments]


def _read_input(value: str | None, file: Path | None, label: str) -> str:
    if value is not None and file is not None:
        rprint(f"[red]Error:[/red] Provide the {label} text or --{label}-file, not both.")
        raise typer.Exit(1) from None
    if file is not None:
        if not file.exists():
            rprint(f"[red]Error:[/red] File not found: {file}")
            raise typer.Exit(1) from None
        return file.read_text(encoding="utf-8").strip()
    return (value or "").strip()


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@app.command()
def init(db: DbOption = None) -> None:
    """Initialize the pea database."""
    path = _db_path(db)
    revision = init_db(path)
    rprint(
        f"[green]✓[/green] Database initialized at [bold]{path}[/bold] "
        f"(revision {revision})"
    )


# ------------------------------------------------------------------
# diff
# ------------------------------------------------------------------


@app.command()
def diff(
    original: Annotated[str | None, typer.Argument(help="Original prompt text")] = None,
    improved: Annotated[str | None, typer.Argument(help="Improved prompt text")] = None,
    original_file: Annotated[
        Path | None,
        typer.Option("--original-file", help="Read the original prompt from a file."),
    ] = None,
    improved_file: Annotated[
        Path | None,
        typer.Option("--improved-file", help="Read the improved prompt from a file."),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Show a word-level diff between an original and an improved prompt."""
    before = _read_input(original, original_file, "original")
    after = _read_input(improved, improved_file, "improved")
    segments = compute_diff(before, after)

    if json_output:
        typer.echo(json.dumps(_segments_json(segments), indent=2))
        return

    stats = summarize(segments)
    console.print(_render_diff(segments))
    rprint(
        f"[dim]{stats.removed} removed | {stats.added} added | "
        f"{stats.unchanged} unchanged[/dim]"
    )


# ------------------------------------------------------------------
# history add
# ------------------------------------------------------------------


@history_app.command("add")
def history_add(
    base_prompt: Annotated[str, typer.Argument(help="Prompt that was improved")],
    improved_prompt: Annotated[str, typer.Argument(help="Improved prompt")],
    model: Annotated[str, typer.Option("--model", "-m", help="Model that produced it.")],
    db: DbOption = None,
) -> None:
    """Record an improved prompt in the version history."""
    grouper, session = _get_grouper(db)
    try:
        version = grouper.add_version(base_prompt.strip(), improved_prompt.strip(), model)
        _commit(grouper, session)
        group = next(g for g in grouper.groups if any(v.id == version.id for v in g.versions))
        rprint(
            f"[green]✓[/green] Saved v{version.version_number} "
            f"in group [bold]{group.id[:8]}[/bold]"
        )
    finally:
        close_session(session)


# ------------------------------------------------------------------
# history list
# ------------------------------------------------------------------


@history_app.command("list")
def history_list(db: DbOption = None, json_output: JsonOption = False) -> None:
    """List version groups, most recently updated first."""
    grouper, session = _get_grouper(db)
    try:
        groups = grouper.groups
        if json_output:
            typer.echo(json.dumps([g.model_dump(mode="json") for g in groups], indent=2))
            return
        if not groups:
            rprint("[dim]No saved versions.[/dim]")
            return

        table = Table(title="Prompt history")
        table.add_column("Group", style="cyan")
        table.add_column("Base prompt")
        table.add_column("Versions", justify="right")
        table.add_column("Updated", style="dim")
        for g in groups:
            table.add_row(
                g.id[:8],
                Text(g.base_prompt if len(g.base_prompt) <= 60 else g.base_prompt[:57] + "..."),
                str(len(g.versions)),
                g.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
    finally:
        close_session(session)


# ------------------------------------------------------------------
# history show
# ------------------------------------------------------------------


@history_app.command("show")
def history_show(
    group: Annotated[str, typer.Argument(help="Group id or id prefix")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show every version in a group."""
    grouper, session = _get_grouper(db)
    try:
        found = grouper.get_group(_resolve_group_id(grouper, group))
        if json_output:
            typer.echo(json.dumps(found.model_dump(mode="json"), indent=2))
            return

        table = Table(title=f"Versions of group {found.id[:8]}")
        table.add_column("Version", justify="right", style="cyan")
        table.add_column("Model")
        table.add_column("Improved prompt")
        table.add_column("Created", style="dim")
        for v in found.versions:
            table.add_row(
                str(v.version_number),
                Text(v.model),
                Text(v.improved_prompt),
                v.timestamp.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
    except ValueError as exc:
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    finally:
        close_session(session)


# ------------------------------------------------------------------
# history compare
# ------------------------------------------------------------------


@history_app.command("compare")
def history_compare(
    group: Annotated[str, typer.Argument(help="Group id or id prefix")],
    v1: Annotated[int, typer.Argument(help="First version number")],
    v2: Annotated[int, typer.Argument(help="Second version number")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Diff the prompts of two versions in the same group."""
    grouper, session = _get_grouper(db)
    try:
        result = grouper.compare_versions(_resolve_group_id(grouper, group), v1, v2)
        if json_output:
            typer.echo(result.model_dump_json(indent=2))
            return

        rprint(
            f"[bold]v{result.first.version_number}[/bold] ({escape(result.first.model)}) → "
            f"[bold]v{result.second.version_number}[/bold] ({escape(result.second.model)})"
        )
        rprint("[bold cyan]Original prompt[/bold cyan]")
        console.print(_render_diff(result.base_prompt_diff))
        rprint("[bold cyan]Improved prompt[/bold cyan]")
        console.print(_render_diff(result.improved_prompt_diff))
    except ValueError as exc:
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    finally:
        close_session(session)


# ------------------------------------------------------------------
# history delete-group / delete-version / clear
# ------------------------------------------------------------------


@history_app.command("delete-group")
def history_delete_group(
    group: Annotated[str, typer.Argument(help="Group id or id prefix")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    db: DbOption = None,
) -> None:
    """Delete a group and all its versions."""
    grouper, session = _get_grouper(db)
    try:
        group_id = _resolve_group_id(grouper, group)
        if not yes and not typer.confirm(f"Delete group '{group_id[:8]}' and all its versions?"):
            rprint("[dim]Aborted.[/dim]")
            raise typer.Exit(0)
        grouper.delete_group(group_id)
        _commit(grouper, session)
        rprint(f"[green]✓[/green] Deleted group [bold]{group_id[:8]}[/bold]")
    except ValueError as exc:
        session.rollback()
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    finally:
        close_session(session)


@history_app.command("delete-version")
def history_delete_version(
    group: Annotated[str, typer.Argument(help="Group id or id prefix")],
    version: Annotated[int, typer.Argument(help="Version number")],
    db: DbOption = None,
) -> None:
    """Delete one version; the group goes too if it was the last one."""
    grouper, session = _get_grouper(db)
    try:
        group_id = _resolve_group_id(grouper, group)
        target = grouper.get_version(group_id, version)
        grouper.delete_version(group_id, target.id)
        _commit(grouper, session)
        rprint(f"[green]✓[/green] Deleted v{version} from group [bold]{group_id[:8]}[/bold]")
    except ValueError as exc:
        session.rollback()
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None
    finally:
        close_session(session)


@history_app.command("clear")
def history_clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    db: DbOption = None,
) -> None:
    """Delete the whole version history."""
    if not yes:
        confirm = typer.confirm("Delete all saved versions?")
        if not confirm:
            rprint("[dim]Aborted.[/dim]")
            raise typer.Exit(0)

    grouper, session = _get_grouper(db)
    try:
        grouper.clear_all()
        _commit(grouper, session)
        rprint("[green]✓[/green] Cleared version history")
    finally:
        close_session(session)


# ------------------------------------------------------------------
# history stats
# ------------------------------------------------------------------


@history_app.command("stats")
def history_stats(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Summarize the history: groups, versions and model usage."""
    grouper, session = _get_grouper(db)
    try:
        summary = grouper.summary()
        if json_output:
            typer.echo(summary.model_dump_json(indent=2))
            return

        rprint(
            f"{summary.total_groups} prompt{'s' if summary.total_groups != 1 else ''} "
            f"with {summary.total_versions} version{'s' if summary.total_versions != 1 else ''}"
        )
        if summary.model_usage:
            table = Table(title="Model usage")
            table.add_column("Model", style="cyan")
            table.add_column("Count", justify="right")
            for usage in summary.model_usage:
                table.add_row(Text(usage.model), str(usage.count))
            console.print(table)
    finally:
        close_session(session)
