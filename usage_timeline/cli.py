"""CLI entry point for the usage timeline."""

from __future__ import annotations

import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path

import click
from pydantic import ValidationError

from usage_timeline.db import EventStore
from usage_timeline.events import dump_event, parse_event
from usage_timeline.models import DailyStats, SessionStatus
from usage_timeline.service import DailyStatsService
from usage_timeline.session_stats import build_session_stats
from usage_timeline.settings import (
    DEFAULT_DB_PATH,
    DEFAULT_SETTINGS_PATH,
    InterpretationSettings,
    SettingsError,
    load_settings,
)
from usage_timeline.timeutil import day_bounds_ms, now_ms, parse_day, to_local


def format_duration(ms: int) -> str:
    """Format milliseconds as 'Xh Ym', 'Ym', or '<1m'.

    Args:
        ms: Duration in milliseconds.

    Returns:
        Formatted duration string.
    """
    if ms < 60_000:  # Less than 1 minute
        return "<1m" if ms > 0 else "0m"
    total_minutes = ms // 60_000
    hours = total_minutes // 60
    minutes = total_minutes % 60
    if hours > 0:
        return f"{hours}h {minutes:2d}m"
    return f"{minutes}m"


def format_minutes_of_day(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def make_progress_bar(value: int, max_value: int, width: int = 16) -> str:
    """Create ASCII progress bar.

    Args:
        value: Current value.
        max_value: Maximum value (100%).
        width: Total width of bar (default: 16).

    Returns:
        Progress bar string like '████████░░░░░░░░'.
    """
    if max_value == 0 or value == 0:
        return "░" * width
    filled = max(1, min(width, round((value / max_value) * width)))
    return "█" * filled + "░" * (width - filled)


def _load_settings_or_exit(ctx: click.Context) -> InterpretationSettings:
    try:
        return load_settings(ctx.obj["settings_path"])
    except SettingsError as e:
        click.echo(str(e), err=True)
        sys.exit(1)


def _resolve_day(day_value: str | None, settings: InterpretationSettings) -> date:
    if day_value is None or day_value == "today":
        return to_local(now_ms(), settings.zone()).date()
    try:
        return parse_day(day_value)
    except ValueError:
        click.echo(f"Invalid date format: {day_value}. Use YYYY-MM-DD.", err=True)
        sys.exit(1)


def _require_db(db: Path) -> None:
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)


db_option = click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_PATH,
    help="Path to SQLite database",
)

day_option = click.option(
    "--day",
    "day_value",
    type=str,
    default=None,
    help="Day to report on (YYYY-MM-DD, default: today)",
)


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_SETTINGS_PATH,
    help="Path to settings JSON",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, settings_path: Path, verbose: bool) -> None:
    """Usage timeline CLI."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path


@main.command("import")
@db_option
def import_events(db: Path) -> None:
    """Append timeline events from stdin (JSONL format).

    Each line is one event object with a "kind" and "timestamp_ms".

    Example usage:
        cat events.jsonl | ut import
    """
    db.parent.mkdir(parents=True, exist_ok=True)

    events = []
    has_input = False
    for line_number, line in enumerate(sys.stdin, 1):
        stripped = line.strip()
        if not stripped:
            continue

        has_input = True

        try:
            events.append(parse_event(json.loads(stripped)))
        except json.JSONDecodeError as e:
            click.echo(f"Warning: line {line_number}: invalid JSON: {e}", err=True)
        except ValidationError as e:
            click.echo(f"Warning: line {line_number}: validation error: {e}", err=True)

    with EventStore.open(db) as store:
        imported_count = store.append_many(events)

    click.echo(f"Imported {imported_count} events")

    # Exit code 1 if we had input but no valid events (all lines were errors)
    if has_input and imported_count == 0:
        sys.exit(1)


@main.command("events")
@db_option
@click.option("--since", type=int, help="Epoch ms (show events at or after this time)")
@click.option("--until", type=int, help="Epoch ms (show events before this time)")
@click.option("--kind", help="Filter by event kind")
@click.option("--limit", type=int, help="Maximum number of events to output")
def events_command(
    db: Path,
    since: int | None,
    until: int | None,
    kind: str | None,
    limit: int | None,
) -> None:
    """Query events from the local database as JSONL.

    Example:
        ut events --since 1737799200000 --kind foreground_app --limit 10
    """
    _require_db(db)

    with EventStore.open(db) as store:
        for event in store.get_events(since, until, kind=kind, limit=limit):
            click.echo(json.dumps(dump_event(event)))


@main.command("status")
@db_option
def status_command(db: Path) -> None:
    """Show the last event time and count for each event kind."""
    _require_db(db)

    with EventStore.open(db) as store:
        kinds = store.get_kind_summary()

    if not kinds:
        click.echo("No events recorded")
        return

    click.echo(f"Database: {db}")
    click.echo()
    click.echo(f"Total events: {sum(k['event_count'] for k in kinds)}")
    click.echo()
    click.echo("Last event per kind:")
    for kind in kinds:
        last = datetime.fromtimestamp(kind["last_timestamp_ms"] / 1000).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"  {kind['kind']}: {last} ({kind['event_count']} events)")


@main.command("sessions")
@db_option
@day_option
@click.option("--grace-ms", type=int, default=None, help="Override the grace period")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def sessions_command(
    ctx: click.Context,
    db: Path,
    day_value: str | None,
    grace_ms: int | None,
    output_json: bool,
) -> None:
    """List the sessions projected for a day.

    Re-running with a different --grace-ms reinterprets the same events.
    """
    _require_db(db)
    settings = _load_settings_or_exit(ctx)
    if grace_ms is not None:
        settings = settings.model_copy(update={"grace_period_ms": grace_ms})
    day = _resolve_day(day_value, settings)
    zone = settings.zone()

    with EventStore.open(db) as store:
        projection = DailyStatsService(store, lambda: settings).project_day(day)

    day_start, day_end = day_bounds_ms(day, zone)
    as_of = min(now_ms(), day_end - 1)
    # The projection window reaches back into earlier days
    stats = []
    for s in build_session_stats(projection.sessions_with_events, None, as_of):
        end = as_of if s.ended_at_ms is None else s.ended_at_ms
        if s.started_at_ms < day_end and (s.started_at_ms >= day_start or end > day_start):
            stats.append(s)
    stats.sort(key=lambda s: s.id)

    if output_json:
        output = [
            {
                **s.model_dump(mode="json"),
                "events": [
                    e.model_dump(mode="json")
                    for e in projection.events_by_session_id.get(s.id, [])
                ],
            }
            for s in stats
        ]
        click.echo(json.dumps(output, indent=2))
        return

    click.echo(f"Sessions: {day.strftime('%b %d, %Y')} (grace {format_duration(settings.grace_period_ms)})")
    click.echo()
    if not stats:
        click.echo("No sessions for this day.")
        return

    for s in stats:
        start = to_local(s.started_at_ms, zone).strftime("%H:%M")
        end = to_local(s.ended_at_ms, zone).strftime("%H:%M") if s.ended_at_ms is not None else "..."
        status = "finished" if s.status == SessionStatus.FINISHED else "open"
        pauses = len(s.pause_resume_events)
        click.echo(
            f"  #{s.id:<3} {s.package_id:<30} {start}-{end:<5} "
            f"{format_duration(s.duration_ms):>7}  {status}"
            + (f"  ({pauses} pause{'s' if pauses != 1 else ''})" if pauses else "")
        )


@main.command("report")
@db_option
@day_option
@click.option("--bucket-minutes", type=click.IntRange(1, 1440), default=None, help="Timeline bucket width")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def report_command(
    ctx: click.Context,
    db: Path,
    day_value: str | None,
    bucket_minutes: int | None,
    output_json: bool,
) -> None:
    """Show the daily usage report.

    Totals, per-app breakdown, time-of-day timeline and the suggestion funnel.
    """
    _require_db(db)
    settings = _load_settings_or_exit(ctx)
    if bucket_minutes is not None:
        settings = settings.model_copy(update={"bucket_size_minutes": bucket_minutes})
    day = _resolve_day(day_value, settings)

    with EventStore.open(db) as store:
        daily = DailyStatsService(store, lambda: settings).calculate_for_date(day)

    if output_json:
        click.echo(daily.model_dump_json(indent=2) if daily is not None else "null")
        return

    click.echo(f"Usage Report: {day.strftime('%b %d, %Y')}")
    click.echo()
    if daily is None:
        click.echo("No usage recorded for this day.")
        click.echo()
        click.echo("Run 'ut status' to check if events are being recorded.")
        return

    _output_human_report(daily)


def _output_human_report(daily: DailyStats) -> None:
    """Output human-readable report."""
    click.echo(f"Total: {format_duration(daily.total_usage_ms)}")
    click.echo(
        f"  Sessions:  {daily.session_count} "
        f"(avg {format_duration(daily.average_session_duration_ms)}, "
        f"longest {format_duration(daily.longest_session_duration_ms)})"
    )
    click.echo(
        f"  Monitored: {format_duration(daily.monitoring_total_minutes * 60_000)} "
        f"(with target app {format_duration(daily.monitoring_with_target_minutes * 60_000)})"
    )
    click.echo()

    if daily.app_usage_stats:
        click.echo("By App:")
        max_total = max(app.total_usage_ms for app in daily.app_usage_stats)
        for app in daily.app_usage_stats:
            name = app.package_id if len(app.package_id) <= 30 else app.package_id[:27] + "..."
            bar = make_progress_bar(app.total_usage_ms, max_total)
            click.echo(
                f"  {name:<30} {format_duration(app.total_usage_ms):>9} "
                f"{app.session_count:>3} sessions   {bar}"
            )
        click.echo()

    used_buckets = [b for b in daily.time_buckets if b.total_usage_ms > 0]
    if used_buckets:
        click.echo("Timeline:")
        width = used_buckets[0].end_minutes_of_day - used_buckets[0].start_minutes_of_day
        for bucket in used_buckets:
            bar = make_progress_bar(bucket.target_usage_minutes, width)
            click.echo(
                f"  {format_minutes_of_day(bucket.start_minutes_of_day)}  {bar} "
                f"{bucket.target_usage_minutes:>3}m  {bucket.top_package_id}"
            )
        click.echo()

    suggestions = daily.suggestion_stats
    if suggestions is not None:
        click.echo(f"Suggestions: {suggestions.total_shown} shown")
        click.echo(
            f"  Skipped: {suggestions.skipped_count} "
            f"(snoozed {suggestions.snoozed_count}, dismissed {suggestions.dismissed_count}), "
            f"disabled for session: {suggestions.disabled_for_session_count}"
        )
        click.echo(
            f"  Ended soon: {suggestions.ended_soon_count}, "
            f"continued: {suggestions.continued_count}, "
            f"no end yet: {suggestions.no_end_yet_count}"
        )


if __name__ == "__main__":
    main()
