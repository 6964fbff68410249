"""ircalert CLI — entry point.

Commands:
    ircalert test     <conditions.json> -F k=v ...   Dry-run conditions against sample fields
    ircalert replay   <rules.json> [events.ndjson]   Feed events through the engine
    ircalert validate <rules.json>                   Check a rules file
    ircalert stats    <rules.json>                   Rule counter summary
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterator

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import settings
from .rules.models import RuleValidationError

console = Console()
err_console = Console(stderr=True)

# ── Helpers ─────────────────────────────────────────────────────────────────


def _level_colour(level: str) -> str:
    return {
        "error": "red",
        "fatal": "bold red",
        "warn": "yellow",
        "warning": "yellow",
        "debug": "dim",
        "info": "green",
    }.get(level.lower(), "white")


def _parse_fields(pairs: tuple[str, ...]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--field")
        fields[key.strip()] = value
    return fields


def _load_store(path: Path):
    from .rules.store import load_rules_file

    try:
        return load_rules_file(path)
    except RuleValidationError as exc:
        err_console.print(f"[red]Invalid rules file:[/red] {escape(str(exc))}")
        sys.exit(2)


def _iter_lines(source: str) -> Iterator[str]:
    if source == "-":
        yield from sys.stdin
        return
    with open(source, encoding="utf-8", errors="replace") as fh:
        yield from fh


# ── CLI root ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version="1.0.0", prog_name="ircalert")
@click.option(
    "--log-level", default=settings.log_level, show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for engine diagnostics (stderr).",
)
def main(log_level: str) -> None:
    """ircalert — alert rules for IRC network log events."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


# ── test ─────────────────────────────────────────────────────────────────────


@main.command()
@click.argument("conditions_file", type=click.Path(exists=True, path_type=Path))
@click.option("--field", "-F", "fields", multiple=True, help="Sample field as key=value (repeatable).")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
def test(conditions_file: Path, fields: tuple[str, ...], as_json: bool) -> None:
    """Dry-run a list of conditions against sample fields.

    Exits with status 1 when not every condition matched.

    \b
    Examples:
      ircalert test conds.json -F level=error -F message="disk full"
      ircalert test conds.json -F subsystem=link --json
    """
    from .engine.dryrun import dry_run

    try:
        conditions = json.loads(conditions_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{conditions_file}: {exc}") from exc
    if isinstance(conditions, dict):
        conditions = conditions.get("conditions", [])
    if not isinstance(conditions, list):
        raise click.BadParameter(f"{conditions_file}: expected a JSON array of conditions")

    try:
        result = dry_run(conditions, _parse_fields(fields))
    except RuleValidationError as exc:
        raise click.BadParameter(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        tbl = Table(title="Condition test", box=box.ROUNDED)
        for col in ("field", "operator", "expected", "actual", "matched"):
            tbl.add_column(col, overflow="fold", max_width=50)
        for r in result.results:
            if r.invalid:
                verdict = f"[red]invalid[/red] ({escape(r.error or '')})"
            else:
                verdict = "[green]yes[/green]" if r.matched else "[yellow]no[/yellow]"
            tbl.add_row(*(escape(v) for v in (r.field, r.operator, r.expected, r.actual)), verdict)
        console.print(tbl)
        colour = "green" if result.all_matched else "yellow"
        console.print(f"[{colour}]all_matched = {str(result.all_matched).lower()}[/{colour}]")

    if not result.all_matched:
        sys.exit(1)


# ── replay ───────────────────────────────────────────────────────────────────


@main.command()
@click.argument("rules_file", type=click.Path(exists=True, path_type=Path))
@click.argument("events", default="-")
@click.option("--dry-run", is_flag=True, help="Report matches without cooldowns, counters or actions.")
@click.option("--limit", "-n", default=0, type=int, help="Max events to read (0 = all).")
def replay(rules_file: Path, events: str, dry_run: bool, limit: int) -> None:
    """Feed NDJSON events (file or '-' for stdin) through the alert engine.

    \b
    Examples:
      ircalert replay rules.json events.ndjson
      tail -f unrealircd.json | ircalert replay rules.json -
      ircalert replay rules.json events.ndjson --dry-run
    """
    from .engine.core import AlertEngine
    from .events.normalizer import normalize

    store = _load_store(rules_file)
    engine = AlertEngine.from_settings(store, settings)
    seen = 0
    fired = 0

    with engine:
        try:
            for line in _iter_lines(events):
                if not line.strip():
                    continue
                if limit and seen >= limit:
                    break
                seen += 1
                event = normalize(line)
                for firing in engine.process(event, dry_run=dry_run):
                    fired += 1
                    colour = _level_colour(event.level)
                    console.print(
                        f"[dim]{escape(event.timestamp)}[/dim] [{colour}]{event.level:8}[/{colour}] "
                        f"[bold]{escape(firing.rule_name)}[/bold] (p{firing.priority}) {escape(event.message)}"
                    )
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped.[/dim]")

    delivery = engine.dispatcher.stats()
    suffix = " (dry run)" if dry_run else f", {delivery['delivered']} delivered, {delivery['failed']} failed"
    console.print(f"\n[dim]{seen} events, {fired} firings{suffix}[/dim]")


# ── validate ─────────────────────────────────────────────────────────────────


@main.command()
@click.argument("rules_file", type=click.Path(exists=True, path_type=Path))
def validate(rules_file: Path) -> None:
    """Validate a rules file and list its rules by priority."""
    from .rules.conditions import precompile
    from .rules.models import OPERATORS

    store = _load_store(rules_file)
    tbl = Table(title=rules_file.name, box=box.ROUNDED)
    tbl.add_column("id", justify="right")
    tbl.add_column("name")
    tbl.add_column("event_type")
    tbl.add_column("priority", justify="right")
    tbl.add_column("cooldown", justify="right")
    tbl.add_column("actions")
    tbl.add_column("warnings", style="yellow", overflow="fold", max_width=50)

    problems = 0
    for rule in store.list_rules():
        warnings: list[str] = precompile(rule.conditions)
        warnings += [f"unknown operator {c.operator!r}" for c in rule.conditions if c.operator not in OPERATORS]
        problems += len(warnings)
        tbl.add_row(
            str(rule.id),
            escape(rule.name) if rule.is_enabled else f"[dim]{escape(rule.name)} (disabled)[/dim]",
            rule.event_type,
            str(rule.priority),
            f"{rule.cooldown:g}s",
            ", ".join(a.kind for a in rule.actions if a.enabled) or "-",
            escape("; ".join(warnings)),
        )
    console.print(tbl)
    console.print(f"[dim]{len(store)} rules, {problems} warnings[/dim]")


# ── stats ────────────────────────────────────────────────────────────────────


@main.command()
@click.argument("rules_file", type=click.Path(exists=True, path_type=Path))
@click.option("--window", default=settings.stats_window, type=int, show_default=True,
              help="Window in seconds for recent_triggers.")
def stats(rules_file: Path, window: int) -> None:
    """Show the rule statistics projection for a rules file."""
    import time

    from .stats import compute_stats

    store = _load_store(rules_file)
    summary: dict[str, Any] = compute_stats(store.list_rules(), now=time.time(), window=window).to_dict()
    tbl = Table(title="Alert rule stats", box=box.SIMPLE_HEAVY)
    tbl.add_column("metric")
    tbl.add_column("value", justify="right", style="cyan")
    for key, value in summary.items():
        tbl.add_row(key, str(value))
    console.print(tbl)


if __name__ == "__main__":
    main()
