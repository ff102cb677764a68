# src/lifeline/cli.py
"""Lifeline Command Line Interface.

Operator tooling over the checkpoint store: inspect sessions and their
checkpoints, dry-run a resume decision, read signal history and apply
retention.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from lifeline import __version__
from lifeline.core.config import LifelineSettings, load_settings

if TYPE_CHECKING:
    from lifeline.core.store import CheckpointStore, StoreDB

__all__ = ["app"]

DEFAULT_SETTINGS_FILE = Path("lifeline.yaml")

app = typer.Typer(
    name="lifeline",
    help="Lifeline: checkpoint and crash recovery for long-running sessions.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"lifeline version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a clearer message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Lifeline: checkpoint and crash recovery for long-running sessions."""
    from lifeline.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


_SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML (default: ./lifeline.yaml if present).",
)
_DATABASE_OPTION = typer.Option(
    None,
    "--database",
    "-d",
    help="SQLAlchemy URL of the checkpoint store (overrides settings).",
)


def _resolve_settings(settings_file: Path | None) -> LifelineSettings:
    path = settings_file if settings_file is not None else DEFAULT_SETTINGS_FILE
    if settings_file is None and not path.exists():
        return LifelineSettings()
    try:
        return load_settings(path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {path}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {path}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo(f"Error: Invalid settings in {path}:", err=True)
        for error in e.errors():
            loc = ".".join(str(part) for part in error["loc"])
            typer.echo(f"  {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _open_store(settings: LifelineSettings, database: str | None) -> tuple[StoreDB, CheckpointStore]:
    from lifeline.core.store import CheckpointStore, StoreDB

    url = database if database is not None else settings.store.url
    try:
        db = StoreDB.from_url(url)
    except Exception as e:
        typer.echo(f"Error connecting to database: {e}", err=True)
        raise typer.Exit(1) from None
    return db, CheckpointStore(db, compress=settings.checkpoint.compression_enabled)


def _fmt_time(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


@app.command()
def status(
    settings_file: Path | None = _SETTINGS_OPTION,
    database: str | None = _DATABASE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List sessions that have checkpoints, most recently active first."""
    settings = _resolve_settings(settings_file)
    db, store = _open_store(settings, database)
    try:
        sessions = store.list_sessions()
    finally:
        db.close()

    if json_output:
        payload = [
            {
                "session_id": s.session_id,
                "checkpoint_count": s.checkpoint_count,
                "latest_checkpoint_number": s.latest_checkpoint_number,
                "latest_created_at": s.latest_created_at.isoformat(),
            }
            for s in sessions
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not sessions:
        typer.echo("No checkpoints stored.")
        return
    for s in sessions:
        typer.echo(
            f"{s.session_id}  checkpoints={s.checkpoint_count}  "
            f"latest=#{s.latest_checkpoint_number} at {_fmt_time(s.latest_created_at)}"
        )


@app.command()
def checkpoints(
    session_id: str = typer.Argument(..., help="Session to list."),
    settings_file: Path | None = _SETTINGS_OPTION,
    database: str | None = _DATABASE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List a session's checkpoints with trigger, risk and size."""
    settings = _resolve_settings(settings_file)
    db, store = _open_store(settings, database)
    try:
        summaries = store.list_summaries(session_id)
    finally:
        db.close()

    if json_output:
        payload = [
            {
                "checkpoint_id": c.checkpoint_id,
                "checkpoint_number": c.checkpoint_number,
                "created_at": c.created_at.isoformat(),
                "triggered_by": c.triggered_by.value,
                "crash_risk": c.crash_risk.value,
                "progress": c.progress,
                "operation": c.operation,
                "uncompressed_size": c.size.uncompressed,
                "compressed_size": c.size.compressed,
                "restored_at": c.restored_at.isoformat() if c.restored_at else None,
            }
            for c in summaries
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not summaries:
        typer.echo(f"No checkpoints for session '{session_id}'.")
        return
    for c in summaries:
        restored = f"  restored {_fmt_time(c.restored_at)}" if c.restored_at else ""
        typer.echo(
            f"#{c.checkpoint_number:<4} {_fmt_time(c.created_at)}  {c.triggered_by.value:<18} "
            f"risk={c.crash_risk.value:<7} progress={c.progress:.0%}  "
            f"{c.size.compressed}B ({c.size.compression_ratio:.1f}x){restored}"
        )


@app.command("resume-check")
def resume_check(
    session_id: str = typer.Argument(..., help="Session to evaluate."),
    settings_file: Path | None = _SETTINGS_OPTION,
    database: str | None = _DATABASE_OPTION,
    accept: bool | None = typer.Option(
        None,
        "--accept/--decline",
        help="Consume the offer (mark restored and record a resume event).",
    ),
) -> None:
    """Show the resume decision a new session would get."""
    from lifeline.core.checkpoint import ResumeDetector

    settings = _resolve_settings(settings_file)
    db, store = _open_store(settings, database)
    try:
        detector = ResumeDetector(store, settings=settings.resume)
        decision = detector.check_resume_needed(session_id)

        if not decision.should_resume or decision.prompt is None:
            typer.echo(f"No resume offered: {decision.reason}")
            if decision.skipped_corrupt:
                typer.echo(f"  Corrupt checkpoints skipped: {', '.join(decision.skipped_corrupt)}")
            if accept is not None:
                raise typer.Exit(1)
            return

        typer.echo(
            f"Resume offered (reason={decision.interruption_reason.value}, confidence={decision.confidence:.2f})"
        )
        typer.echo(decision.prompt.render())

        if accept is None:
            return
        from lifeline.contracts.errors import LifelineError

        try:
            event = detector.consume(decision, accepted=accept)
        except LifelineError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from None
        typer.echo(f"Recorded resume event {event.resume_event_id} ({'accepted' if accept else 'declined'}).")
    finally:
        db.close()


@app.command()
def signals(
    session_id: str = typer.Argument(..., help="Session to inspect."),
    settings_file: Path | None = _SETTINGS_OPTION,
    database: str | None = _DATABASE_OPTION,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of records to show."),
) -> None:
    """Show recent signal history for a session, newest first."""
    settings = _resolve_settings(settings_file)
    db, store = _open_store(settings, database)
    try:
        history = store.list_signal_history(session_id, limit=limit)
    finally:
        db.close()

    if not history:
        typer.echo(f"No signal history for session '{session_id}'.")
        return
    for record in history:
        s = record.snapshot
        factors = f"  [{'; '.join(s.risk_factors)}]" if s.risk_factors else ""
        typer.echo(
            f"{_fmt_time(record.recorded_at)}  risk={record.crash_risk.value:<7} "
            f"context={s.context_window_usage:.0%} messages={s.message_count} "
            f"tools={s.tool_call_count} failures={s.tool_failure_rate:.0%}{factors}"
        )


@app.command()
def cleanup(
    settings_file: Path | None = _SETTINGS_OPTION,
    database: str | None = _DATABASE_OPTION,
    retention_days: int | None = typer.Option(
        None,
        "--retention-days",
        "-r",
        min=0,
        help="Delete checkpoints older than this many days (default: from config or 30).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would be deleted without deleting.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Apply retention: expire old checkpoints and trim per-session counts.

    The most recent checkpoint of every session is always kept.

    Examples:

        # See what would be deleted
        lifeline cleanup --dry-run

        # Delete checkpoints older than 7 days
        lifeline cleanup --retention-days 7 --yes
    """
    from lifeline.core.retention import RetentionManager

    settings = _resolve_settings(settings_file)
    retention = settings.retention
    if retention_days is not None:
        retention = retention.model_copy(update={"retention_days": retention_days})

    db, store = _open_store(settings, database)
    try:
        manager = RetentionManager(store, retention)
        expired = manager.preview()

        if dry_run:
            typer.echo(f"Would delete {expired} checkpoint(s) older than {retention.retention_days} days.")
            return

        if not yes:
            confirm = typer.confirm(
                f"Delete checkpoints older than {retention.retention_days} days "
                f"and keep at most {retention.max_checkpoints_per_session} per session?"
            )
            if not confirm:
                typer.echo("Aborted.")
                raise typer.Exit(1)

        result = manager.purge()
        typer.echo(f"Cleanup completed in {result.duration_seconds:.2f}s:")
        typer.echo(f"  Expired: {result.expired_checkpoints}")
        typer.echo(f"  Pruned (over per-session limit): {result.pruned_checkpoints}")
        typer.echo(f"  Signal history deleted: {result.signal_history_deleted}")
    finally:
        db.close()
