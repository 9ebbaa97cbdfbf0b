#!/usr/bin/env python3
"""CLI runner for the alert coordination service.

Usage:
    railrakshak watch                       # Live feed + escalation sweeper
    railrakshak sweep                       # One escalation sweep
    railrakshak sos --coach B4 --seat 32 --category medical_emergency
    railrakshak evidence --coach A1 --seat 12 --category overpricing
    railrakshak assign <alert-id> --operator "RPF Unit 7"
    railrakshak resolve <alert-id>
    railrakshak list --status escalated
    railrakshak stats
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

from common.alert_store.models import AlertKind, AlertStatus, StoreUnavailableError
from common.alert_store.store import AlertStore

from .commands import CommandHandler, CommandResult
from .config import config
from .intake import report_sos, submit_evidence
from .replica import ReplicaSynchronizer
from .service import AlertCoordinationService, ServiceConfig
from .state_machine import InvalidTransition
from .sweeper import EscalationSweeper
from .views import alert_card, dashboard_summary

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def run_watch(service_config: ServiceConfig) -> int:
    """Run the live feed and sweeper until interrupted."""
    service = AlertCoordinationService(config=service_config)
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


async def _sweep(store: AlertStore, service_config: ServiceConfig) -> dict:
    replica = ReplicaSynchronizer(store, snapshot_limit=service_config.snapshot_limit)
    await replica.refresh()
    sweeper = EscalationSweeper(
        store,
        replica,
        grace_period_seconds=service_config.grace_period_seconds,
        observer_id=service_config.observer_id,
    )
    return await sweeper.sweep_once()


def run_sweep(store: AlertStore, service_config: ServiceConfig) -> int:
    """Run a single escalation sweep."""
    outcomes = asyncio.run(_sweep(store, service_config))
    for alert_id, outcome in outcomes.items():
        print(f"{alert_id}: {outcome.value}")
    print(f"\nOverdue alerts processed: {len(outcomes)}")
    return 0


def run_command(handler: CommandHandler, action: str, alert_id: str, operator: str, notes=None) -> int:
    """Apply an operator command and report the outcome."""
    try:
        if action == "assign":
            result = handler.assign(alert_id, operator)
        elif action == "investigate":
            result = handler.start_investigation(alert_id, operator)
        else:
            result = handler.resolve(alert_id, operator, notes=notes)
    except InvalidTransition as e:
        print(f"Rejected: {e}")
        return 2

    print(result.message)
    return 0 if result is CommandResult.OK else 1


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="RailRakshak alert coordination - live feed, escalation and operator commands"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help=f"Alert database path (default: {config.ALERT_DB_PATH})",
    )
    parser.add_argument(
        "--observer-id",
        type=str,
        default=None,
        help=f"Name of this process in audit entries (default: {config.OBSERVER_ID})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("watch", help="Run live feed and escalation sweeper")
    sub.add_parser("sweep", help="Run one escalation sweep and exit")

    sos = sub.add_parser("sos", help="Raise an SOS alert")
    sos.add_argument("--coach", required=True)
    sos.add_argument("--seat", required=True)
    sos.add_argument("--category", required=True)
    sos.add_argument("--request-id", default=None)

    evidence = sub.add_parser("evidence", help="File an evidence complaint")
    evidence.add_argument("--coach", required=True)
    evidence.add_argument("--seat", required=True)
    evidence.add_argument("--category", required=True)
    evidence.add_argument("--description", default="")
    evidence.add_argument("--image-url", default=None)
    evidence.add_argument("--train-number", default=None)
    evidence.add_argument("--request-id", default=None)

    for action in ("assign", "investigate", "resolve"):
        cmd = sub.add_parser(action, help=f"{action.capitalize()} an alert")
        cmd.add_argument("alert_id")
        cmd.add_argument("--operator", default="CLI Operator")
        if action == "resolve":
            cmd.add_argument("--notes", default=None)

    list_cmd = sub.add_parser("list", help="List alerts")
    list_cmd.add_argument("--status", choices=[s.value for s in AlertStatus], default=None)
    list_cmd.add_argument("--kind", choices=[k.value for k in AlertKind], default=None)
    list_cmd.add_argument("--limit", type=int, default=50)

    sub.add_parser("stats", help="Show alert statistics")

    args = parser.parse_args()
    setup_logging(args.debug)

    service_config = ServiceConfig.from_env()
    if args.db_path:
        service_config = replace(service_config, db_path=args.db_path)
    if args.observer_id:
        service_config = replace(service_config, observer_id=args.observer_id)

    if args.command == "watch":
        return run_watch(service_config)

    try:
        store = AlertStore(db_path=service_config.db_path)

        if args.command == "sweep":
            return run_sweep(store, service_config)

        if args.command == "sos":
            alert = report_sos(store, args.coach, args.seat, args.category, args.request_id)
            print(json.dumps(alert.to_dict(), indent=2))
            return 0

        if args.command == "evidence":
            alert = submit_evidence(
                store,
                args.coach,
                args.seat,
                args.category,
                description=args.description,
                image_url=args.image_url,
                train_number=args.train_number,
                request_id=args.request_id,
            )
            print(f"Complaint reference: {alert.reference}")
            return 0

        if args.command in ("assign", "investigate", "resolve"):
            handler = CommandHandler(store)
            return run_command(
                handler,
                args.command,
                args.alert_id,
                args.operator,
                notes=getattr(args, "notes", None),
            )

        if args.command == "list":
            alerts = store.list_alerts(
                status=AlertStatus(args.status) if args.status else None,
                kind=AlertKind(args.kind) if args.kind else None,
                limit=args.limit,
            )
            for alert in alerts:
                card = alert_card(alert, grace_period_seconds=service_config.grace_period_seconds)
                countdown = f"  {card['countdown']}" if card["countdown"] else ""
                print(
                    f"{alert.id}  {alert.coach}/{alert.seat}  {alert.kind.value:<8} "
                    f"{alert.category:<20} {alert.priority.value:<6} "
                    f"{alert.status.value:<13} {card['received']}{countdown}"
                )
            print(f"\nTotal: {len(alerts)}")
            return 0

        if args.command == "stats":
            stats = store.get_stats()
            stats.update({f"summary_{k}": v for k, v in dashboard_summary(store.list_alerts()).items()})
            print(json.dumps(stats, indent=2, sort_keys=True))
            return 0

    except StoreUnavailableError as e:
        logger.error(f"Alert store unavailable: {e}")
        return 3
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    return 1


if __name__ == "__main__":
    sys.exit(main())
