"""
Event Ledger Audit Tool — independent chain integrity verification.

Connects directly to the ledger database, recomputes every hash in the
chain and reports the first entry that fails, if any.

Usage:
    python -m custody_actions.ledger.audit
    python -m custody_actions.ledger.audit --database-url sqlite:///other.db
    python -m custody_actions.ledger.audit --source swapper --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from custody_actions.config import settings
from custody_actions.ledger.service import EventLedger

console = Console()


def run_audit(database_url: str, verbose: bool = False, source: str | None = None) -> bool:
    """
    Run a full hash chain integrity audit.

    Args:
        database_url: SQLAlchemy connection string.
        verbose: Print the entry listing if True.
        source: Restrict the listing to the events of one action.

    Returns:
        True if the chain is valid, False otherwise.
    """
    console.print("\n[bold blue]═══ Event Ledger Integrity Audit ═══[/bold blue]\n")

    ledger = EventLedger(database_url)

    count = ledger.get_entry_count()
    console.print(f"  Entries in ledger: [bold]{count}[/bold]")

    if count == 0:
        console.print("[yellow]⚠ Ledger is empty — no entries to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()
    is_valid, entries_verified, message = ledger.verify_chain()
    elapsed = time.time() - start_time

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at entry: {entries_verified}")
        console.print(f"  Reason: {message}")

    if verbose:
        console.print("\n[bold]Entry Listing:[/bold]")
        table = Table(show_lines=True)
        table.add_column("Seq", style="cyan", width=6)
        table.add_column("Source", style="yellow", width=20)
        table.add_column("Event", style="green", width=26)
        table.add_column("Ledger time", width=12)
        table.add_column("Hash (first 16)", style="dim", width=18)

        if source:
            entries = ledger.get_entries_by_source(source, limit=count)
        else:
            entries = ledger.get_latest_entries(limit=count)
        for entry in reversed(entries):
            table.add_row(
                str(entry.sequence_number),
                entry.source,
                entry.event_name,
                str(entry.event_timestamp),
                entry.entry_hash[:16] + "...",
            )
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid


def main() -> None:
    parser = argparse.ArgumentParser(description="Custody action event ledger integrity auditor")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument("--source", default=None, help="Only list the events of this action")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed entry listing",
    )
    args = parser.parse_args()

    db_url = args.database_url or settings.database_url
    is_valid = run_audit(db_url, verbose=args.verbose, source=args.source)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
