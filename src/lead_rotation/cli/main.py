"""Main CLI entry point for the rotation command."""

import functools
import logging
import sys
import click
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from typing import Optional, Tuple

from ..core.config import RotationConfigManager, settings
from ..core.errors import LedgerWriteFailure, RotationError
from ..core.lanes import Lane, Period, RotationTarget
from ..service import RotationService
from ..storage.database import RotationDatabase
from ..storage.models import LeadDraft

console = Console()

LANE_CHOICES = ["sub1k", "over1k", "1kplus"]
TARGET_CHOICES = ["sub1k", "over1k", "both"]


def get_db(db_path: Optional[str] = None) -> RotationDatabase:
    """Get database instance."""
    path = Path(db_path) if db_path else None
    return RotationDatabase(path)


def get_service(db_path: Optional[str] = None) -> RotationService:
    config = RotationConfigManager(Path(settings.config_path)).config
    return RotationService(get_db(db_path), config=config)


def resolve_rep(service: RotationService, ref: str) -> str:
    """Accept a rep id or (case-insensitive) name."""
    reps = service.list_reps()
    for rep in reps:
        if rep.id == ref:
            return rep.id
    matches = [rep for rep in reps if rep.name.lower() == ref.lower()]
    if len(matches) == 1:
        return matches[0].id
    if matches:
        raise click.BadParameter(f"'{ref}' matches {len(matches)} reps; use the id")
    raise click.BadParameter(f"No rep named or with id '{ref}'")


def rep_names(service: RotationService) -> dict:
    return {rep.id: rep.name for rep in service.list_reps()}


def period_from(month: Optional[int], year: Optional[int]) -> Period:
    current = Period.current()
    return Period(month or current.month, year or current.year)


def handle_errors(func):
    """Print rotation errors instead of tracebacks."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LedgerWriteFailure as e:
            console.print(f"[yellow]Saved, but the hit ledger could not be updated: {e.message}[/yellow]")
            console.print("[dim]The event is queued in the database; run 'rotation reconcile --flush' to write it.[/dim]")
        except RotationError as e:
            console.print(f"[red]{e.message}[/red]")
            sys.exit(1)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

    return wrapper


def period_options(func):
    func = click.option("--year", "-y", type=int, help="Year (default: current)")(func)
    func = click.option("--month", "-m", type=click.IntRange(1, 12), help="Month (default: current)")(func)
    return func


@click.group()
@click.version_option(version="1.0.0", prog_name="rotation")
def cli():
    """Lead Rotation - round-robin lead assignment with hit accounting.

    \b
    Quick Start:
      rotation init                                  # Initialize database
      rotation rep add "Dana" --over1k               # Add reps
      rotation assign ACC-1001 --units 240           # Assign from rotation
      rotation show sub1k                            # Who is next
    """
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


# ============================================================================
# CORE COMMANDS
# ============================================================================

@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def migrate(db_path: Optional[str]):
    """Run pending database migrations."""
    from ..storage.migrations import run_migrations

    db = get_db(db_path)
    count = run_migrations(str(db.db_path))
    if count:
        console.print(f"[green]Applied {count} migration(s)[/green]")
    else:
        console.print("[dim]No pending migrations[/dim]")


@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def init(db_path: Optional[str]):
    """Initialize the rotation database."""
    db = get_db(db_path)

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Location: [cyan]{db.db_path}[/cyan]\n\n"
        f"[bold]Quick Start:[/bold]\n"
        f"1. [yellow]rotation rep add \"Dana\" --over1k[/yellow]\n"
        f"2. [yellow]rotation assign ACC-1001 --units 240[/yellow]\n"
        f"3. [yellow]rotation show sub1k[/yellow]\n\n"
        f"[dim]Run 'rotation --help' for all commands[/dim]",
        title="Lead Rotation"
    ))


# ============================================================================
# REPS
# ============================================================================

@cli.group()
def rep():
    """Manage sales reps."""
    pass


@rep.command("add")
@click.argument("name")
@click.option("--over1k", is_flag=True, help="Rep can take leads of 1000+ units")
@click.option("--max-units", type=int, help="Largest lead the rep takes")
@click.option("--type", "-t", "property_types", multiple=True, help="Supported property type (repeatable)")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def rep_add(name: str, over1k: bool, max_units: Optional[int], property_types: Tuple[str, ...],
            db_path: Optional[str]):
    """Add a rep at the end of the rotation."""
    service = get_service(db_path)
    rep = service.add_rep(name, can_handle_over1k=over1k, max_units=max_units,
                          property_types=list(property_types))
    console.print(f"[green]✓ Added {rep.name}[/green] [dim]({rep.id})[/dim]")


@rep.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include inactive reps")
@click.option("--db", "db_path", help="Custom database path")
def rep_list(show_all: bool, db_path: Optional[str]):
    """List sales reps."""
    service = get_service(db_path)
    reps = service.list_reps(include_inactive=show_all)

    if not reps:
        console.print("[yellow]No reps yet.[/yellow]")
        return

    table = Table(title=f"Sales Reps ({len(reps)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Sub-1k", justify="right")
    table.add_column("1k+", justify="right")
    table.add_column("Max Units", justify="right")
    table.add_column("Types")
    table.add_column("Status")

    for r in reps:
        status = "[green]active[/green]" if r.is_active else "[dim]inactive[/dim]"
        table.add_row(
            r.id,
            r.name,
            str(r.sub1k_order),
            str(r.over1k_order) if r.can_handle_over1k and r.over1k_order is not None else "-",
            str(r.max_units) if r.max_units is not None else "-",
            ", ".join(r.property_types) or "any",
            status,
        )

    console.print(table)


@rep.command("deactivate")
@click.argument("rep_ref")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def rep_deactivate(rep_ref: str, db_path: Optional[str]):
    """Take a rep out of rotation (history is kept)."""
    service = get_service(db_path)
    rep = service.deactivate_rep(resolve_rep(service, rep_ref))
    console.print(f"[green]✓ {rep.name} is inactive[/green]")


@rep.command("activate")
@click.argument("rep_ref")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def rep_activate(rep_ref: str, db_path: Optional[str]):
    """Put a rep back into rotation."""
    service = get_service(db_path)
    rep = service.activate_rep(resolve_rep(service, rep_ref))
    console.print(f"[green]✓ {rep.name} is active[/green]")


@rep.command("move")
@click.argument("rep_ref")
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@click.argument("position", type=click.IntRange(min=1))
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def rep_move(rep_ref: str, lane: str, position: int, db_path: Optional[str]):
    """Move a rep to POSITION in a lane's order."""
    service = get_service(db_path)
    roster = service.move_rep(resolve_rep(service, rep_ref), Lane.parse(lane), position)
    names = rep_names(service)
    console.print(" → ".join(names.get(rep_id, rep_id) for rep_id in roster))


# ============================================================================
# LEADS
# ============================================================================

@cli.command()
@click.argument("account_number")
@click.option("--units", "-u", type=click.IntRange(min=0), required=True, help="Unit count")
@click.option("--type", "-t", "property_types", multiple=True, help="Property type (repeatable)")
@click.option("--day", "-d", type=click.IntRange(1, 31), help="Day of month (default: today)")
@period_options
@click.option("--rep", "rep_ref", help="Assign to this rep instead of the rotation pick")
@click.option("--replaces", help="Lead id this lead replaces")
@click.option("--url", help="Link to the account")
@click.option("--comments", help="Free-form comments")
@click.option("--operator", help="Operator name, to honour your own reservation")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def assign(account_number: str, units: int, property_types: Tuple[str, ...], day: Optional[int],
           month: Optional[int], year: Optional[int], rep_ref: Optional[str], replaces: Optional[str],
           url: Optional[str], comments: Optional[str], operator: Optional[str], db_path: Optional[str]):
    """Assign a lead, from rotation unless --rep or --replaces is given."""
    from datetime import date

    service = get_service(db_path)
    period = period_from(month, year)
    draft = LeadDraft(
        account_number=account_number,
        unit_count=units,
        property_types=list(property_types),
        day=day or date.today().day,
        month=period.month,
        year=period.year,
        url=url,
        comments=comments,
    )
    assigned_to = resolve_rep(service, rep_ref) if rep_ref else None

    result = service.assign_lead(draft, assigned_to=assigned_to, replaces=replaces, operator=operator)
    name = rep_names(service).get(result.lead.rep_id, result.lead.rep_id)

    if result.mark:
        console.print(f"[green]✓ {result.lead.account_number} replaces {replaces} for {name}[/green]")
    elif result.cushioned:
        console.print(f"[green]✓ {result.lead.account_number} → {name}[/green] [yellow](cushioned, no hit)[/yellow]")
    else:
        console.print(f"[green]✓ {result.lead.account_number} → {name}[/green]")
    console.print(f"[dim]Lead id: {result.lead.id} ({result.lead.lane.value})[/dim]")


@cli.command("delete-lead")
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def delete_lead(lead_id: str, db_path: Optional[str]):
    """Delete a lead (refused while it is marked for replacement)."""
    service = get_service(db_path)
    lead = service.delete_lead(lead_id)
    console.print(f"[green]✓ Deleted {lead.account_number}[/green]")


@cli.command()
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def mark(lead_id: str, db_path: Optional[str]):
    """Mark a lead for replacement."""
    service = get_service(db_path)
    m = service.mark_for_replacement(lead_id)
    console.print(f"[green]✓ {m.account_number or lead_id} marked for replacement[/green]")
    console.print(f"[dim]Assign the replacement with: rotation assign <ACCOUNT> --units N --replaces {lead_id}[/dim]")


@cli.command()
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def unmark(lead_id: str, db_path: Optional[str]):
    """Remove an open replacement mark."""
    service = get_service(db_path)
    m = service.remove_mark(lead_id)
    console.print(f"[green]✓ {m.account_number or lead_id} is a normal lead again[/green]")


# ============================================================================
# SKIPS / OOO
# ============================================================================

def _add_entry(kind: str, rep_ref: str, day: int, target: str, month: Optional[int],
               year: Optional[int], db_path: Optional[str]):
    service = get_service(db_path)
    rep_id = resolve_rep(service, rep_ref)
    period = period_from(month, year)
    add = service.add_skip if kind == "skip" else service.add_ooo
    entry = add(rep_id, day, period, RotationTarget.parse(target))
    console.print(f"[green]✓ {kind.upper()} for {rep_names(service)[rep_id]} on {period}-{day:02d}[/green] "
                  f"[dim]({entry.id}, {entry.rotation_target.value})[/dim]")


@cli.command()
@click.argument("rep_ref")
@click.option("--day", "-d", type=click.IntRange(1, 31), required=True, help="Day of month")
@click.option("--target", type=click.Choice(TARGET_CHOICES), default="both", help="Lane(s) the skip counts in")
@period_options
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def skip(rep_ref: str, day: int, target: str, month: Optional[int], year: Optional[int], db_path: Optional[str]):
    """Record a skip (counts as a hit)."""
    _add_entry("skip", rep_ref, day, target, month, year, db_path)


@cli.command()
@click.argument("rep_ref")
@click.option("--day", "-d", type=click.IntRange(1, 31), required=True, help="Day of month")
@click.option("--target", type=click.Choice(TARGET_CHOICES), default="both", help="Lane(s) affected")
@period_options
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def ooo(rep_ref: str, day: int, target: str, month: Optional[int], year: Optional[int], db_path: Optional[str]):
    """Record an out-of-office day (no hit)."""
    _add_entry("ooo", rep_ref, day, target, month, year, db_path)


@cli.command("delete-entry")
@click.argument("entry_id")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def delete_entry(entry_id: str, db_path: Optional[str]):
    """Delete a skip or OOO entry."""
    service = get_service(db_path)
    entry = service.delete_entry(entry_id)
    console.print(f"[green]✓ Deleted {entry.entry_type.value} on {entry.period}-{entry.day:02d}[/green]")


# ============================================================================
# ROTATION
# ============================================================================

@cli.command("next")
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@period_options
@click.option("--db", "db_path", help="Custom database path")
def next_rep(lane: str, month: Optional[int], year: Optional[int], db_path: Optional[str]):
    """Show who is next in a lane."""
    service = get_service(db_path)
    rep_id = service.next_rep(Lane.parse(lane), period_from(month, year))
    if not rep_id:
        console.print("[yellow]No active reps in this lane.[/yellow]")
        return
    console.print(f"[bold cyan]{rep_names(service).get(rep_id, rep_id)}[/bold cyan] [dim]({rep_id})[/dim]")


@cli.command()
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@period_options
@click.option("--db", "db_path", help="Custom database path")
def show(lane: str, month: Optional[int], year: Optional[int], db_path: Optional[str]):
    """Display the rotation for a lane."""
    service = get_service(db_path)
    lane = Lane.parse(lane)
    period = period_from(month, year)
    rows = service.rotation(lane, period)

    if not rows:
        console.print("[yellow]No active reps in this lane.[/yellow]")
        return

    names = rep_names(service)
    ledger = service.hit_totals(lane, period)

    table = Table(title=f"Rotation - {lane.value} - {period}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Rep", style="cyan")
    table.add_column("Hits", justify="right", style="bold")
    table.add_column("Ledger", justify="right")
    table.add_column("Next", justify="center")

    for row in rows:
        table.add_row(
            str(row.position),
            names.get(row.rep_id, row.rep_id),
            str(row.hits),
            str(ledger.get(row.rep_id, 0)),
            "[green]◀[/green]" if row.is_next else "",
        )

    console.print(table)


@cli.command()
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@period_options
@click.option("--db", "db_path", help="Custom database path")
def hits(lane: str, month: Optional[int], year: Optional[int], db_path: Optional[str]):
    """Show ledger hit totals for a lane."""
    service = get_service(db_path)
    totals = service.hit_totals(Lane.parse(lane), period_from(month, year))
    names = rep_names(service)

    table = Table(title=f"Hits - {Lane.parse(lane).value}")
    table.add_column("Rep", style="cyan")
    table.add_column("Net", justify="right", style="bold")
    for rep_id, net in totals.items():
        table.add_row(names.get(rep_id, rep_id), str(net))
    console.print(table)


@cli.command()
@period_options
@click.option("--flush", is_flag=True, help="Retry queued ledger events first")
@click.option("--db", "db_path", help="Custom database path")
def reconcile(month: Optional[int], year: Optional[int], flush: bool, db_path: Optional[str]):
    """Compare ledger totals against a recount of the month."""
    service = get_service(db_path)
    if flush:
        written = service.flush_pending_hits()
        console.print(f"[dim]Flushed {written} queued event(s)[/dim]")

    drift = service.reconcile(period_from(month, year))
    if not drift:
        console.print("[green]✓ Ledger matches the rotation recount[/green]")
        return

    names = rep_names(service)
    table = Table(title="Ledger Drift")
    table.add_column("Rep", style="cyan")
    table.add_column("Lane")
    table.add_column("Ledger", justify="right")
    table.add_column("Recount", justify="right")
    table.add_column("Diff", justify="right", style="red")
    for row in drift:
        table.add_row(names.get(row.rep_id, row.rep_id), row.lane.value,
                      str(row.ledger), str(row.recount), f"{row.difference:+d}")
    console.print(table)
    sys.exit(1)


# ============================================================================
# CUSHIONS
# ============================================================================

@cli.group()
def cushion():
    """Manage cushions (assignments that do not count as hits)."""
    pass


@cushion.command("set")
@click.argument("rep_ref")
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@click.option("--value", "-v", type=click.IntRange(min=0), help="Cushion size (default from config)")
@click.option("--occurrences", "-n", type=click.IntRange(min=0), default=1, help="Number of cycles")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def cushion_set(rep_ref: str, lane: str, value: Optional[int], occurrences: int, db_path: Optional[str]):
    """Give a rep a cushion in a lane (value 0 clears it)."""
    service = get_service(db_path)
    rep_id = resolve_rep(service, rep_ref)
    state = service.set_cushion(rep_id, Lane.parse(lane), value, occurrences)
    console.print(f"[green]✓ Cushion {state.current} x{state.occurrences} for "
                  f"{rep_names(service)[rep_id]} in {Lane.parse(lane).value}[/green]")


@cushion.command("show")
@click.option("--db", "db_path", help="Custom database path")
def cushion_show(db_path: Optional[str]):
    """List live cushions."""
    service = get_service(db_path)
    cushions = service.active_cushions()
    if not cushions:
        console.print("[dim]No active cushions[/dim]")
        return

    names = rep_names(service)
    table = Table(title="Active Cushions")
    table.add_column("Rep", style="cyan")
    table.add_column("Lane")
    table.add_column("Current", justify="right")
    table.add_column("Cycles Left", justify="right")
    table.add_column("Size", justify="right")
    for rep_id, lane, state in cushions:
        table.add_row(names.get(rep_id, rep_id), lane.value, str(state.current),
                      str(state.occurrences), str(state.original))
    console.print(table)


# ============================================================================
# RESERVATIONS / AUDIT
# ============================================================================

@cli.command()
@click.argument("rep_ref")
@click.argument("lane", type=click.Choice(LANE_CHOICES))
@click.option("--by", "reserved_by", required=True, help="Operator holding the rep")
@click.option("--units", type=int, help="Unit count of the lead being prepared")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def reserve(rep_ref: str, lane: str, reserved_by: str, units: Optional[int], db_path: Optional[str]):
    """Hold a rep while you prepare a lead."""
    service = get_service(db_path)
    reservation = service.reserve(resolve_rep(service, rep_ref), Lane.parse(lane), reserved_by, unit_count=units)
    console.print(f"[green]✓ Reserved until {reservation.expires_at:%H:%M}[/green] [dim]({reservation.id})[/dim]")


@cli.command()
@click.argument("reservation_id")
@click.option("--db", "db_path", help="Custom database path")
@handle_errors
def release(reservation_id: str, db_path: Optional[str]):
    """Release a reservation."""
    service = get_service(db_path)
    service.release(reservation_id)
    console.print("[green]✓ Released[/green]")


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of actions to show")
@click.option("--rep", "rep_ref", help="Only actions for this rep")
@click.option("--db", "db_path", help="Custom database path")
def audit(limit: int, rep_ref: Optional[str], db_path: Optional[str]):
    """Show recent audit actions."""
    service = get_service(db_path)
    rep_id = resolve_rep(service, rep_ref) if rep_ref else None
    entries = service.audit.recent(limit=limit, rep_id=rep_id)

    if not entries:
        console.print("[dim]No audit actions yet[/dim]")
        return

    names = rep_names(service)
    table = Table(title=f"Audit ({len(entries)})")
    table.add_column("When", style="dim")
    table.add_column("Action", style="bold")
    table.add_column("Rep", style="cyan")
    table.add_column("Account")
    table.add_column("Lane")
    table.add_column("Hits", justify="right")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.action.value,
            names.get(entry.rep_id, entry.rep_id or ""),
            entry.account_number or "",
            entry.lane or "",
            f"{entry.hit_value_change:+d}" if entry.hit_value_change else "0",
        )
    console.print(table)


# ============================================================================
# CONFIG
# ============================================================================

@cli.group()
def config():
    """View or change rotation settings."""
    pass


@config.command("show")
def config_show():
    """Show the current configuration."""
    manager = RotationConfigManager(Path(settings.config_path))
    cfg = manager.config

    table = Table(title=f"Config ({manager.config_path})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("default_cushion", str(cfg.default_cushion))
    table.add_row("reservation_ttl_minutes", str(cfg.reservation_ttl_minutes))
    table.add_row("ledger_retry_attempts", str(cfg.ledger_retry_attempts))
    table.add_row("cas_retry_attempts", str(cfg.cas_retry_attempts))
    table.add_row("property_types", ", ".join(cfg.property_types))
    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value (property_types takes a comma-separated list)."""
    manager = RotationConfigManager(Path(settings.config_path))
    if key == "property_types":
        parsed = [t.strip() for t in value.split(",") if t.strip()]
    else:
        try:
            parsed = int(value)
        except ValueError:
            console.print(f"[red]{key} must be a whole number[/red]")
            sys.exit(1)

    try:
        manager.update(**{key: parsed})
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ {key} = {value}[/green]")


if __name__ == "__main__":
    cli()
