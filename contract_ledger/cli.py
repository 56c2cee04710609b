"""
contract-ledger -- maintenance commands for the contract state ledger.

Usage:
    contract-ledger init-db
    contract-ledger recalculate [--contract-id <uuid>]
    contract-ledger check-drift [--contract-id <uuid>] [--fix] [--dry-run]
    contract-ledger timeline <contract-uuid> [--as-of 2024-03-31] [--json]

Examples:
    # Create the ledger tables in the configured database
    contract-ledger --db-url sqlite:///./ledger.db init-db

    # Rebuild every materialized projection
    contract-ledger recalculate

    # Report drift between ledger and stored totals, then correct it
    contract-ledger check-drift
    contract-ledger check-drift --fix

    # Audit timeline of one contract as it stood at the end of March
    contract-ledger timeline a1b2c3d4-e5f6-7890-abcd-ef1234567890 --as-of 2024-03-31

Configuration comes from ``--config`` (or ``$CONTRACT_LEDGER_CONFIG``);
``--db-url`` overrides the database URL from any source.
"""

import argparse
import json
import sys
from dataclasses import replace
from datetime import date, datetime
from uuid import UUID

import yaml

from contract_ledger.config import LedgerConfig, load_config
from contract_ledger.domain.describe import format_amount
from contract_ledger.logging_config import configure_logging

W = 80


# =============================================================================
# Formatting helpers
# =============================================================================


def banner(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}")
    print("=" * W)


def field(name: str, value, indent: int = 4) -> None:
    print(f"{' ' * indent}{name}: {value}")


def parse_as_of(value: str) -> date | datetime:
    """``YYYY-MM-DD`` (end of that day) or a full ISO timestamp."""
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r}") from exc


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(args, config: LedgerConfig) -> int:
    from contract_ledger.db.engine import create_tables

    create_tables()
    print(f"Tables created in {config.database_url}")
    return 0


def cmd_recalculate(args, config: LedgerConfig) -> int:
    from contract_ledger.db.engine import session_scope
    from contract_ledger.services.state_calculator import StateCalculator

    with session_scope() as session:
        calculator = StateCalculator(session, config=config)

        if args.contract_id:
            state = calculator.recalculate_contract(args.contract_id)
            field("contract_id", state.contract_id, indent=2)
            field("total_amount", format_amount(state.current_total_amount), indent=2)
            field("active_specification_id", state.active_specification_id, indent=2)
            field("active_events", len(state.active_event_ids), indent=2)
            return 0

        result = calculator.recalculate_all_contracts()

    print(f"Recalculated {result.succeeded}/{result.total} contracts")
    for failure in result.failures:
        print(
            f"  FAILED {failure.contract_id} [{failure.error_code}] {failure.error_message}",
            file=sys.stderr,
        )
    return 1 if result.failed else 0


def cmd_check_drift(args, config: LedgerConfig) -> int:
    from contract_ledger.db.engine import session_scope
    from contract_ledger.models.contract import Contract
    from contract_ledger.services.reconciliation_service import ReconciliationService
    from contract_ledger.services.state_event_service import ContractStateEventService

    apply = args.fix and not args.dry_run
    drifted = 0
    fixed = 0

    with session_scope() as session:
        ledger = ContractStateEventService(session, config=config)
        reconciler = ReconciliationService(ledger, epsilon=config.amount_epsilon)

        for report in reconciler.check_all(args.contract_id):
            if not report.has_drift:
                continue
            drifted += 1
            print(
                f"{report.contract_number:<20} ledger={format_amount(report.computed_total):>20} "
                f"stored={format_amount(report.stored_total):>20} "
                f"diff={format_amount(report.difference):>16}"
            )
            if apply:
                contract = session.get(Contract, report.contract_id)
                result = reconciler.reconcile_contract(contract, apply=True)
                if result.applied:
                    fixed += 1
                    field("corrective_event_id", result.corrective_event_id)

    if not drifted:
        print("No drift found")
        return 0
    if args.fix and args.dry_run:
        print(f"{drifted} contract(s) drifted (dry run, nothing written)")
        return 1
    if apply:
        print(f"{fixed}/{drifted} contract(s) corrected")
        return 0 if fixed == drifted else 1
    print(f"{drifted} contract(s) drifted")
    return 1


def cmd_timeline(args, config: LedgerConfig) -> int:
    from contract_ledger.db.engine import session_scope
    from contract_ledger.exceptions import ContractNotFoundError
    from contract_ledger.models.contract import Contract
    from contract_ledger.services.state_event_service import ContractStateEventService

    with session_scope() as session:
        contract = session.get(Contract, args.contract_id)
        if contract is None:
            raise ContractNotFoundError(str(args.contract_id))

        ledger = ContractStateEventService(session, config=config)
        entries = ledger.get_timeline_entries(contract, args.as_of)
        if args.as_of is not None:
            state = ledger.get_state_at_date(contract, args.as_of)
        else:
            state = ledger.get_current_state(contract)

        if args.json:
            payload = {
                "contract_id": str(contract.id),
                "contract_number": contract.number,
                "as_of": state.as_of_date.isoformat() if state.as_of_date else None,
                "total_amount": str(state.total_amount),
                "active_specification_id": (
                    str(state.active_specification_id)
                    if state.active_specification_id
                    else None
                ),
                "events": [
                    {
                        "id": str(e.event.id),
                        "event_type": e.event.event_type.value,
                        "amount_delta": str(e.event.amount_delta),
                        "effective_from": e.event.effective_from.isoformat(),
                        "created_at": e.event.created_at.isoformat(),
                        "triggered_by": str(e.event.triggered_by),
                        "supersedes_event_id": (
                            str(e.event.supersedes_event_id)
                            if e.event.supersedes_event_id
                            else None
                        ),
                        "is_active": e.event.is_active,
                        "description": e.description,
                    }
                    for e in entries
                ],
            }
            print(json.dumps(payload, indent=2))
            return 0

        banner(f"CONTRACT {contract.number}")
        field("contract_id", contract.id)
        field("as_of", state.as_of_date)
        field("total_amount", format_amount(state.total_amount))
        field("active_specification_id", state.active_specification_id)
        print()
        for entry in entries:
            event = entry.event
            marker = " " if event.is_active else "x"
            print(
                f"  [{marker}] {event.effective_from:%Y-%m-%d}  "
                f"{format_amount(event.amount_delta, signed=True):>18}  "
                f"{entry.description}"
            )
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "recalculate": cmd_recalculate,
    "check-drift": cmd_check_drift,
    "timeline": cmd_timeline,
}


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contract-ledger",
        description="Maintenance commands for the contract state ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  contract-ledger init-db\n"
            "  contract-ledger recalculate --contract-id a1b2c3d4-...\n"
            "  contract-ledger check-drift --fix\n"
            "  contract-ledger timeline a1b2c3d4-... --as-of 2024-03-31\n"
        ),
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="YAML config file (default: $CONTRACT_LEDGER_CONFIG)",
    )
    parser.add_argument(
        "--db-url", type=str, default=None,
        help="Database URL (overrides config and $DATABASE_URL)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the ledger tables")

    recalc = sub.add_parser("recalculate", help="Rebuild materialized projections")
    recalc.add_argument(
        "--contract-id", type=UUID, default=None,
        help="Only this contract (default: every event-sourced contract)",
    )

    drift = sub.add_parser("check-drift", help="Compare ledger and stored totals")
    drift.add_argument(
        "--contract-id", type=UUID, default=None,
        help="Only this contract",
    )
    drift.add_argument(
        "--fix", action="store_true",
        help="Append a corrective event for each drifted contract",
    )
    drift.add_argument(
        "--dry-run", action="store_true",
        help="With --fix: report what would be corrected, write nothing",
    )

    timeline = sub.add_parser("timeline", help="Show a contract's event history")
    timeline.add_argument("contract_id", type=UUID, help="Contract UUID")
    timeline.add_argument(
        "--as-of", type=parse_as_of, default=None,
        help="Cut the history at this date (YYYY-MM-DD) or ISO timestamp",
    )
    timeline.add_argument(
        "--json", action="store_true",
        help="Output JSON instead of formatted text",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"  ERROR: Cannot load config: {exc}", file=sys.stderr)
        return 1
    if args.db_url:
        config = replace(config, database_url=args.db_url)

    configure_logging(level=config.log_level)

    from contract_ledger.db.engine import init_engine_from_url

    try:
        init_engine_from_url(config.database_url, echo=config.echo_sql)
    except Exception as exc:
        print(f"  ERROR: Cannot connect to database: {exc}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](args, config)
    except Exception as exc:
        code = getattr(exc, "code", None)
        prefix = f"[{code}] " if code else ""
        print(f"  ERROR: {prefix}{exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
