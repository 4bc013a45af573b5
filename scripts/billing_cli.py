#!/usr/bin/env python3
"""
Operator command line for the recurring billing system.

Subcommands:
    init-db        Create tables and sequence counters.
    seed           Create demo customers with PENDING invoices.
    run-now        Run one billing pass immediately and print its summary.
    requeue ID     Put a failed or stranded invoice back to PENDING.
    status STATUS  List invoices in a status, one page at a time.
    failures ID    Show the failed-billing history of an invoice.
    verify-audit   Validate the audit hash chain.
    serve          Arm the timer loop and block until interrupted.

Passes use a simulated gateway; ``--decline-rate`` and ``--error-rate``
control how often it declines or fails with a network error.

Usage:
    python3 scripts/billing_cli.py --db-url sqlite:///billing.db init-db
    python3 scripts/billing_cli.py seed --customers 5 --invoices 3
    python3 scripts/billing_cli.py run-now --decline-rate 0.2
    python3 scripts/billing_cli.py status FAILED_PAYMENT --page 2
"""

from __future__ import annotations

import argparse
import os
import random
import sys
import time
from decimal import Decimal
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from billing_batch.orchestrator import BillingOrchestrator  # noqa: E402
from billing_config import DATABASE_URL_ENV, get_active_config  # noqa: E402
from billing_kernel.domain.invoice import Invoice, InvoiceStatus  # noqa: E402
from billing_kernel.domain.values import Currency, Money  # noqa: E402
from billing_kernel.exceptions import BillingKernelError, NetworkError  # noqa: E402


# =============================================================================
# Simulated gateway
# =============================================================================


class SimulatedGateway:
    """PaymentGateway stand-in for local runs.

    Declines with probability ``decline_rate`` and raises NetworkError with
    probability ``error_rate``; otherwise the charge succeeds.
    """

    def __init__(self, decline_rate: float = 0.0, error_rate: float = 0.0, seed: int | None = None):
        for name, rate in (("decline_rate", decline_rate), ("error_rate", error_rate)):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {rate}")
        self._decline_rate = decline_rate
        self._error_rate = error_rate
        self._random = random.Random(seed)
        self.charged: list[int] = []

    def charge(self, invoice: Invoice) -> bool:
        roll = self._random.random()
        if roll < self._error_rate:
            raise NetworkError(f"simulated timeout charging invoice {invoice.id}")
        if roll < self._error_rate + self._decline_rate:
            return False
        self.charged.append(invoice.id)
        return True


# =============================================================================
# Output helpers
# =============================================================================


def banner(title: str) -> None:
    print()
    print("=" * 60)
    print(f"  {title}")
    print("=" * 60)


def field(label: str, value: object, indent: int = 2) -> None:
    print(f"{' ' * indent}{label:<16} {value}")


def print_invoice(invoice: Invoice) -> None:
    print(
        f"  #{invoice.id:<6} customer={invoice.customer_id:<6} "
        f"{invoice.amount!s:>16}  {invoice.status.value}"
    )


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    # Tables are created by the bootstrap when the command asks for them.
    banner("DATABASE READY")
    return 0


def cmd_seed(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    rng = random.Random(args.seed)
    currencies = list(Currency)
    created = 0

    for _ in range(args.customers):
        customer = orchestrator.store.create_customer(rng.choice(currencies))
        for _ in range(args.invoices):
            cents = rng.randint(100, 100_000)
            orchestrator.store.create_invoice(
                customer.id,
                Money.of(Decimal(cents) / 100, customer.currency),
            )
            created += 1

    banner("SEEDED")
    field("customers", args.customers)
    field("invoices", created)
    return 0


def cmd_run_now(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    summary = orchestrator.force_run_now(batch_size=args.batch_size)

    banner("BILLING PASS")
    field("pass_id", summary.pass_id)
    field("trigger", summary.trigger.value)
    field("started_at", summary.started_at)
    field("duration_ms", summary.duration_ms)
    field("succeeded", summary.succeeded)
    field("failed", summary.failed)
    field("skipped", summary.skipped)
    field("errored", summary.errored)
    field("total", summary.total)
    return 0 if summary.errored == 0 else 2


def cmd_requeue(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    invoice = orchestrator.force_requeue(args.invoice_id)
    banner("REQUEUED")
    print_invoice(invoice)
    return 0


def cmd_status(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    status = InvoiceStatus.parse(args.status)
    with orchestrator.open_selector() as selector:
        invoices = selector.fetch_by_status(
            status, page=args.page, page_size=args.page_size,
        )

    banner(f"{status.value} (page {args.page})")
    if not invoices:
        print("  (none)")
    for invoice in invoices:
        print_invoice(invoice)
    return 0


def cmd_failures(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    with orchestrator.open_selector() as selector:
        if selector.get_invoice(args.invoice_id) is None:
            print(f"  ERROR: Invoice {args.invoice_id} not found", file=sys.stderr)
            return 1
        history = selector.failed_billing_history(args.invoice_id)

    banner(f"FAILED BILLINGS FOR #{args.invoice_id}")
    if not history:
        print("  (none)")
    for record in history:
        print(f"  {record.timestamp}  {record.reason.value:<22} {record.message}")
    return 0


def cmd_verify_audit(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    orchestrator.validate_audit_chain()
    banner("AUDIT CHAIN VALID")
    return 0


def cmd_serve(orchestrator: BillingOrchestrator, args: argparse.Namespace) -> int:
    if not orchestrator.start():
        print("  Scheduling is disabled in the configuration.", file=sys.stderr)
        return 1

    banner("BILLING SCHEDULE ARMED (Ctrl-C to stop)")
    try:
        while orchestrator.timer.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n  Stopping...")
    finally:
        orchestrator.stop()
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "seed": cmd_seed,
    "run-now": cmd_run_now,
    "requeue": cmd_requeue,
    "status": cmd_status,
    "failures": cmd_failures,
    "verify-audit": cmd_verify_audit,
    "serve": cmd_serve,
}


# =============================================================================
# Main
# =============================================================================


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Operate the recurring invoice billing system.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  python3 scripts/billing_cli.py init-db\n"
            "  python3 scripts/billing_cli.py run-now --decline-rate 0.1\n"
            "  python3 scripts/billing_cli.py requeue 42\n"
        ),
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="YAML configuration file (default: $BILLING_CONFIG or the bundled default)",
    )
    parser.add_argument(
        "--db-url", type=str, default=None,
        help="Database URL, overriding the configuration",
    )
    parser.add_argument(
        "--decline-rate", type=float, default=0.0,
        help="Probability that the simulated gateway declines a charge",
    )
    parser.add_argument(
        "--error-rate", type=float, default=0.0,
        help="Probability that the simulated gateway raises a network error",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for the simulated gateway and demo data",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and sequence counters")

    seed = sub.add_parser("seed", help="Create demo customers and PENDING invoices")
    seed.add_argument("--customers", type=int, default=3)
    seed.add_argument("--invoices", type=int, default=2, help="Invoices per customer")

    run_now = sub.add_parser("run-now", help="Run one billing pass now")
    run_now.add_argument("--batch-size", type=int, default=None)

    requeue = sub.add_parser("requeue", help="Move an invoice back to PENDING")
    requeue.add_argument("invoice_id", type=int)

    status = sub.add_parser("status", help="List invoices in a status")
    status.add_argument("status", choices=[s.value for s in InvoiceStatus])
    status.add_argument("--page", type=int, default=1)
    status.add_argument("--page-size", type=int, default=10)

    failures = sub.add_parser("failures", help="Failed-billing history of an invoice")
    failures.add_argument("invoice_id", type=int)

    sub.add_parser("verify-audit", help="Validate the audit hash chain")
    sub.add_parser("serve", help="Run passes on the configured cadence")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    environ = dict(os.environ)
    if args.db_url:
        environ[DATABASE_URL_ENV] = args.db_url

    try:
        config = get_active_config(args.config, environ=environ)
        gateway = SimulatedGateway(
            decline_rate=args.decline_rate,
            error_rate=args.error_rate,
            seed=args.seed,
        )
        orchestrator = BillingOrchestrator.from_config(
            config,
            gateway,
            create_schema=args.command in ("init-db", "seed"),
        )
        return COMMANDS[args.command](orchestrator, args)
    except (BillingKernelError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
