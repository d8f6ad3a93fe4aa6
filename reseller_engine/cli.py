"""
Operator entry points for the reseller usage engine.

Usage:
  reseller-engine sync-usage [--reseller ID]
  reseller-engine charge-wallet [--reseller ID] [--force] [--dry-run] [--cycle-key KEY]
  reseller-engine reenable --reason {traffic,quota,window,wallet} [--reseller ID]
  reseller-engine diagnose-wallet --reseller ID

A scheduler (cron, systemd timer, ...) is expected to call sync-usage and
charge-wallet periodically; the engine itself does not schedule anything.
"""
import argparse
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich import box

from reseller_engine.core.logging import configure_logging
from reseller_engine.db import models  # noqa
from reseller_engine.db.session import SessionLocal
from reseller_engine.schemas.outcomes import (
    ReenableSummary,
    UsageSyncSummary,
    WalletChargeCycleSummary,
    WalletDiagnosis,
)
from reseller_engine.services.engine import ResellerEngine, build_engine
from reseller_engine.services.reactivation_service import REASON_TAGS, ReactivationError
from reseller_engine.services.wallet_service import get_reseller

console = Console()


def render_usage_sync(summary: UsageSyncSummary) -> Table:
    table = Table(title="Usage sync", box=box.SIMPLE_HEAVY)
    table.add_column("Reseller", justify="right")
    table.add_column("Mode")
    table.add_column("Effective bytes", justify="right")
    table.add_column("Read failures", justify="right")
    table.add_column("Enforcement")
    enforcement = {item.reseller_id: item for item in summary.enforcement}
    for item in summary.aggregation:
        verdict = enforcement.get(item.reseller_id)
        label = "-" if verdict is None else (f"{verdict.status} ({verdict.reason})" if verdict.reason else verdict.status)
        table.add_row(str(item.reseller_id), item.mode, f"{item.effective_used_bytes:,}", str(item.read_failures), label)
    table.caption = f"{summary.resellers} resellers, {summary.suspended} suspended, {summary.failed} failed"
    return table


def render_wallet_cycle(summary: WalletChargeCycleSummary) -> Table:
    table = Table(title=f"Wallet charge cycle {summary.cycle_key}", box=box.SIMPLE_HEAVY)
    table.add_column("Reseller", justify="right")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Delta bytes", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Balance after", justify="right")
    for result in summary.results:
        style = {"charged": "green", "lock_failed": "yellow", "failed": "red"}.get(result.status)
        table.add_row(
            str(result.reseller_id),
            result.status + (" [suspended]" if result.suspended else ""),
            result.reason or "",
            f"{result.delta_bytes:,}",
            str(result.cost),
            "" if result.new_balance is None else str(result.new_balance),
            style=style,
        )
    table.caption = (
        f"charged={summary.charged} skipped={summary.skipped} lock_failed={summary.lock_failed} "
        f"failed={summary.failed} suspended={summary.suspended} total_cost={summary.total_cost}"
    )
    if summary.previewed:
        table.caption += f" previewed={summary.previewed} would_cost={summary.total_would_be_cost}"
    return table


def render_reenable(summary: ReenableSummary) -> Table:
    table = Table(title=f"Reactivation ({summary.reason})", box=box.SIMPLE_HEAVY)
    table.add_column("Reseller", justify="right")
    table.add_column("Status")
    table.add_column("Reseller flipped")
    table.add_column("Found", justify="right")
    table.add_column("Enabled", justify="right")
    table.add_column("Failed", justify="right")
    for result in summary.results:
        table.add_row(
            str(result.reseller_id), result.status, "yes" if result.reseller_reactivated else "no",
            str(result.found), str(result.enabled), str(result.failed),
        )
    table.caption = f"{summary.resellers} resellers, {summary.enabled} configs enabled, {summary.failed} failed"
    return table


def render_diagnosis(diagnosis: WalletDiagnosis) -> Table:
    table = Table(title=f"Wallet diagnosis for reseller {diagnosis.reseller_id}", box=box.SIMPLE_HEAVY, show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    for field, value in diagnosis.model_dump().items():
        table.add_row(field, str(value))
    return table


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="reseller-engine", description="Reseller usage, quota and wallet engine")
    p.add_argument("--log-level", default=None)
    sub = p.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync-usage", help="Aggregate usage and enforce traffic quotas")
    sync.add_argument("--reseller", type=int, default=None)

    charge = sub.add_parser("charge-wallet", help="Run one wallet charge cycle")
    charge.add_argument("--reseller", type=int, default=None)
    charge.add_argument("--cycle-key", default=None)
    charge.add_argument("--force", action="store_true", help="Ignore the idempotency window")
    charge.add_argument("--dry-run", action="store_true", help="Report costs without charging")

    reenable = sub.add_parser("reenable", help="Re-enable configs suspended for a reason")
    reenable.add_argument("--reason", choices=REASON_TAGS, default="traffic")
    reenable.add_argument("--reseller", type=int, default=None, help="Defaults to every eligible reseller")

    diagnose = sub.add_parser("diagnose-wallet", help="Show the pending charge state of a wallet reseller")
    diagnose.add_argument("--reseller", type=int, required=True)
    return p


def run(args: argparse.Namespace, engine: ResellerEngine, db) -> int:
    if args.command == "sync-usage":
        summary = engine.run_usage_sync(db, reseller_id=args.reseller)
        console.print(render_usage_sync(summary))
        return 1 if summary.failed else 0

    if args.command == "charge-wallet":
        summary = engine.run_wallet_charge_cycle(
            db, cycle_key=args.cycle_key, reseller_id=args.reseller, force=args.force, dry_run=args.dry_run,
        )
        console.print(render_wallet_cycle(summary))
        return 1 if summary.failed else 0

    if args.command == "reenable":
        try:
            summary = engine.run_reenable(db, reseller_id=args.reseller, reason=args.reason, actor_type="operator")
        except ReactivationError as e:
            console.print(f"[red]{e}[/red]")
            return 2
        console.print(render_reenable(summary))
        return 1 if summary.failed else 0

    if args.command == "diagnose-wallet":
        reseller = get_reseller(db, args.reseller)
        if reseller is None:
            console.print(f"[red]Reseller {args.reseller} not found[/red]")
            return 2
        console.print(render_diagnosis(engine.wallet.diagnose(db, reseller)))
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    engine = build_engine()
    db = SessionLocal()
    try:
        return run(args, engine, db)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
