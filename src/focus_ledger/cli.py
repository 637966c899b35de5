#!/usr/bin/env python3
"""Focus ledger CLI.

Operator commands against the ledger database. When a server owns the
database, commands are sent to it over HTTP instead.

Usage:
    focus-ledger status
    focus-ledger start
    focus-ledger use-rest
    focus-ledger add-rest 10
    focus-ledger settings --cycle-minutes 50 --normal 10 --bonus 30
    focus-ledger watch
    focus-ledger serve
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.live import Live
from rich.table import Table

from .client import LedgerClient, LedgerClientError, LocalLedger
from .config import get_config
from .engine import FocusEngine, format_clock, wall_clock_ms
from .models import RewardKind
from .store import SqliteStore, StoreOwnedError, read_owner

console = Console()


@contextmanager
def open_ledger(ctx: click.Context):
    """Yield the backend for one command: a local engine, or the server that owns the database.

    The local engine continues the stored session, so cycles finished since
    the previous command are credited on this one.
    """
    store = SqliteStore(ctx.obj["db_path"])
    try:
        engine = FocusEngine(store, clock=ctx.obj["clock"], seed_on_load=False)
    except StoreOwnedError as e:
        owner = e.owner
        store.close()
    else:
        try:
            yield LocalLedger(engine)
        finally:
            engine.close()
            store.close()
        return

    url = owner.get("url")
    if not url:
        raise click.ClickException(f"the ledger is open in another focus-ledger process (pid {owner.get('pid')})")
    try:
        yield LedgerClient(url, session=ctx.obj.get("http_session"))
    except LedgerClientError as e:
        raise click.ClickException(str(e))


def _report(result: dict) -> None:
    """Print what a command did. Rejections exit non-zero."""
    if not result.get("accepted", True):
        raise click.ClickException(result.get("reason") or "command rejected")
    reward = result.get("reward")
    if reward:
        style = "bold magenta" if reward["classification"] == RewardKind.BONUS.value else "bold green"
        console.print(f"[{style}]{reward['message']}[/{style}]")
    if result.get("notice"):
        console.print(result["notice"])
    elif not result.get("events") and result.get("reason"):
        console.print(f"[dim]Nothing to do: {result['reason']}.[/dim]")


def _run(ctx: click.Context, name: str, **body) -> None:
    with open_ledger(ctx) as ledger:
        _report(ledger.command(name, **body))


def build_status_table(state: dict) -> Table:
    table = Table(show_header=True, header_style="bold cyan", border_style="blue", expand=False)
    table.add_column("Field", style="white")
    table.add_column("Value", justify="right")

    if state["restState"] == "resting":
        remaining = state["restSecondsRemaining"]
        color = "red" if remaining < 0 else "cyan"
        table.add_row("Mode", "[cyan]resting[/cyan]")
        table.add_row("Rest left", f"[{color}]{format_clock(remaining)}[/{color}]")
    else:
        mode = "[green]focusing[/green]" if state["isRunning"] else "[red]paused[/red]"
        table.add_row("Mode", mode)
    table.add_row("Focus time", format_clock(state["elapsedSeconds"]))
    table.add_row("Next cycle in", format_clock(state["secondsLeftInCycle"]))
    table.add_row("Cycle progress", f"{state['cycleProgressPercent']:.0f}%")
    table.add_row("Completed cycles", str(state["completedCycles"]))
    balance = state["restMinuteBalance"]
    balance_color = "red" if balance < 0 else "yellow"
    table.add_row("Rest balance", f"[{balance_color}]{balance} min[/{balance_color}]")
    settings = state["settings"]
    table.add_row(
        "Settings",
        f"{settings['cycleMinutes']}m cycle, +{settings['normalRewardMinutes']} / "
        f"+{settings['bonusRewardMinutes']} every {settings['bonusEveryNth']}th",
    )
    return table


@click.group()
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Ledger database (defaults to FOCUS_LEDGER_DB or ~/.focus-ledger/ledger.db)",
)
@click.pass_context
def cli(ctx, db_path):
    """Focus ledger - focus cycles earn rest minutes."""
    config = get_config()
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["db_path"] = db_path or config.db_path
    ctx.obj.setdefault("clock", wall_clock_ms)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the reconciled timer state."""
    with open_ledger(ctx) as ledger:
        console.print(build_status_table(ledger.state()))


def _simple_command(name: str, help_text: str):
    @cli.command(name=name, help=help_text)
    @click.pass_context
    def command(ctx):
        _run(ctx, name)

    return command


start = _simple_command("start", "Start or resume the focus timer.")
pause = _simple_command("pause", "Pause the focus timer.")
resume = _simple_command("resume", "Reconcile after being away.")
tick = _simple_command("tick", "Reconcile once against the clock.")
reset_elapsed = _simple_command("reset-elapsed", "Reset focus time progress.")
add_cycle = _simple_command("add-cycle", "Add one completed cycle (no reward).")
remove_cycle = _simple_command("remove-cycle", "Remove one completed cycle.")
reset_cycles = _simple_command("reset-cycles", "Reset completed cycles to zero.")
use_rest = _simple_command("use-rest", "Spend the rest balance, or borrow 5 minutes.")
end_rest = _simple_command("end-rest", "End the rest session and settle the balance.")
reset_rest = _simple_command("reset-rest", "Reset the rest balance to zero.")


@cli.command(name="add-rest")
@click.argument("minutes", type=int)
@click.pass_context
def add_rest(ctx, minutes):
    """Add MINUTES to the rest balance."""
    _run(ctx, "add-rest", minutes=minutes)


@cli.command(name="remove-rest")
@click.argument("minutes", type=int)
@click.pass_context
def remove_rest(ctx, minutes):
    """Remove MINUTES from the rest balance."""
    _run(ctx, "remove-rest", minutes=minutes)


@cli.command()
@click.option("--cycle-minutes", type=int, default=None, help="Focus cycle length in minutes")
@click.option("--normal", "normal_reward", type=int, default=None, help="Rest minutes per normal cycle")
@click.option("--bonus", "bonus_reward", type=int, default=None, help="Rest minutes per bonus cycle")
@click.option("--bonus-every", type=int, default=None, help="Every Nth cycle is a bonus cycle")
@click.pass_context
def settings(ctx, cycle_minutes, normal_reward, bonus_reward, bonus_every):
    """Show settings, or update them when any option is given."""
    with open_ledger(ctx) as ledger:
        current = ledger.settings()
        if all(value is None for value in (cycle_minutes, normal_reward, bonus_reward, bonus_every)):
            for key, value in current.items():
                click.echo(f"{key}: {value}")
            return
        _report(ledger.command(
            "settings",
            cycle_minutes=current["cycle_minutes"] if cycle_minutes is None else cycle_minutes,
            normal_reward_minutes=current["normal_reward_minutes"] if normal_reward is None else normal_reward,
            bonus_reward_minutes=current["bonus_reward_minutes"] if bonus_reward is None else bonus_reward,
            bonus_every_nth=bonus_every,
        ))


@cli.command()
@click.confirmation_option(prompt="Clear all focus progress and rest balance?")
@click.pass_context
def reboot(ctx):
    """Clear every persisted field (settings are kept)."""
    _run(ctx, "reboot")


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds between ticks")
@click.pass_context
def watch(ctx, interval):
    """Live dashboard that ticks the ledger until Ctrl+C."""
    interval = interval or ctx.obj["config"].tick_seconds
    with open_ledger(ctx) as ledger:
        try:
            with Live(build_status_table(ledger.state()), console=console, refresh_per_second=4) as live:
                while True:
                    result = ledger.command("tick")
                    if result.get("reward") or result.get("notice"):
                        live.console.print(result["reward"]["message"] if result.get("reward") else result["notice"])
                    live.update(build_status_table(result["state"]))
                    time.sleep(interval)
        except KeyboardInterrupt:
            pass


@cli.command()
@click.pass_context
def serve(ctx):
    """Run the HTTP API with its tick source."""
    config = ctx.obj["config"]
    store = SqliteStore(ctx.obj["db_path"])
    try:
        owner = read_owner(store)
    finally:
        store.close()
    if owner is not None:
        raise click.ClickException(f"the ledger is already open in process {owner.get('pid')}")
    os.environ["FOCUS_LEDGER_DB"] = str(ctx.obj["db_path"])
    uvicorn.run("focus_ledger.server:app", host=config.host, port=config.port)


if __name__ == "__main__":
    cli()
