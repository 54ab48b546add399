"""
Command-line interface for billguard.

Provides commands for:
- Managing spending limits and alerts
- Recording spend
- Simulating billing webhooks
- Showing a user's limits and subscription
"""

import argparse
import logging
import os
import sys

from billguard.models import AlertFrequency, SpendCategory
from billguard.periods import Period, format_period
from billguard.spending_limits import NotFoundError, SpendingController
from billguard.storage import SQLiteStorage
from billguard.subscription import SubscriptionService, get_remaining_generations
from billguard.webhooks import BillingEventType, WebhookProcessor, simulate_webhook


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger("billguard")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        root.addHandler(handler)
    root.setLevel(logging.INFO if verbose else logging.WARNING)


def cmd_status(args, storage):
    """Show limits, totals and subscription for a user."""
    summary = SpendingController(storage).get_summary(args.user)
    status = SubscriptionService(storage).get_status(args.user)

    print("\n" + "=" * 60)
    print(f"BILLGUARD STATUS: {args.user}")
    print("=" * 60)
    print(f"Tier: {status.tier.value}")
    remaining = get_remaining_generations(status)
    print(f"Generations used: {status.generations_used} "
          f"(remaining: {'unlimited' if remaining is None else remaining})")
    print(f"Usage resets: {status.reset_date.date().isoformat()}")
    print()
    print("-" * 60)
    print("SPENDING LIMITS")
    print("-" * 60)
    if not summary["limits"]:
        print("  (none)")
    for limit in summary["limits"]:
        flag = "EXCEEDED" if limit["exceeded"] else ("APPROACHING" if limit["approaching"] else "ok")
        print(f"  {limit['id']}  {limit['period']:<8} "
              f"${limit['current_spend']:.2f} / ${limit['amount']:.2f} "
              f"({limit['percentage']}%) {flag}, {limit['days_remaining']} days left")
    print()
    print(f"This month: ${summary['total_spend_this_month']:.2f}")
    print(f"This year:  ${summary['total_spend_this_year']:.2f}")
    print("=" * 60)
    return 0


def cmd_add_limit(args, storage):
    limit = SpendingController(storage).add_limit(
        args.user, args.amount, args.period, block_on_exceed=not args.no_block
    )
    print(f"Created {format_period(limit.period).lower()} limit {limit.id} of ${limit.amount:.2f}")
    return 0


def cmd_add_alert(args, storage):
    try:
        alert = SpendingController(storage).add_alert(
            args.user,
            args.name,
            threshold=args.threshold,
            percentage=args.percentage,
            frequency=args.frequency,
            channels=args.channel or None,
            limit_id=args.limit_id,
        )
    except NotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Created alert {alert.id} ({alert.frequency.value})")
    return 0


def cmd_spend(args, storage):
    outcome = SpendingController(storage).record_spend(
        args.user, args.amount, args.description, args.category, enforce=args.enforce
    )
    if not outcome.allowed:
        print(f"Blocked: {outcome.reason}")
        return 2
    print(f"Recorded ${args.amount:.2f} ({args.category})")
    for alert in outcome.triggered_alerts:
        print(f"  ALERT: {alert.name} (fired {alert.trigger_count}x)")
    return 0


def cmd_webhook(args, storage):
    """Simulate a billing event and apply it."""
    metadata = {}
    if args.price_id:
        metadata["priceId"] = args.price_id
    if args.status:
        metadata["status"] = args.status
    payload = simulate_webhook(args.event_type, args.user, metadata)

    service = SubscriptionService(storage)
    result = WebhookProcessor().process_event(payload, service.handle_subscription_update)
    if not result.success:
        print(f"Error [{result.error_code.value}]: {result.error}")
        return 1
    print(f"Processed {args.event_type}; tier is now {service.get_status(args.user).tier.value}")
    return 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="billguard: spending limits and subscription CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Cap monthly spend at $100
  billguard add-limit --user u1 --amount 100 --period monthly

  # Alert at 80% of that limit, at most once a day
  billguard add-alert --user u1 --name "80%" --threshold 80 --percentage 80 \\
      --frequency daily --limit-id limit-...

  # Record spend, refusing it if a limit would be broken
  billguard spend --user u1 --amount 45 --category generation --enforce

  # Upgrade a user through a simulated checkout
  billguard webhook checkout.session.completed --user u1
""",
    )
    parser.add_argument("--db", default=os.getenv("BILLGUARD_DB_PATH", "billguard.db"),
                        help="SQLite database path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at INFO level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", help="Show a user's limits and tier")
    status_parser.add_argument("--user", "-u", required=True)

    limit_parser = subparsers.add_parser("add-limit", help="Add a spending limit")
    limit_parser.add_argument("--user", "-u", required=True)
    limit_parser.add_argument("--amount", "-a", type=float, required=True)
    limit_parser.add_argument("--period", "-p", default="monthly",
                              choices=[p.value for p in Period])
    limit_parser.add_argument("--no-block", action="store_true",
                              help="Warn only; never refuse spend")

    alert_parser = subparsers.add_parser("add-alert", help="Add a spending alert")
    alert_parser.add_argument("--user", "-u", required=True)
    alert_parser.add_argument("--name", "-n", required=True)
    alert_parser.add_argument("--threshold", "-t", type=float, required=True)
    alert_parser.add_argument("--percentage", type=float,
                              help="Percent of the limit's cap (limit alerts only)")
    alert_parser.add_argument("--frequency", "-f", default="once",
                              choices=[f.value for f in AlertFrequency])
    alert_parser.add_argument("--channel", "-c", action="append",
                              choices=["email", "push", "both"])
    alert_parser.add_argument("--limit-id", help="Attach to this limit (global if omitted)")

    spend_parser = subparsers.add_parser("spend", help="Record a spend")
    spend_parser.add_argument("--user", "-u", required=True)
    spend_parser.add_argument("--amount", "-a", type=float, required=True)
    spend_parser.add_argument("--description", "-d", default="Manual spend")
    spend_parser.add_argument("--category", default="generation",
                              choices=[c.value for c in SpendCategory])
    spend_parser.add_argument("--enforce", action="store_true",
                              help="Refuse spend that breaks a blocking limit")

    webhook_parser = subparsers.add_parser("webhook", help="Simulate a billing event")
    webhook_parser.add_argument("event_type", choices=[t.value for t in BillingEventType])
    webhook_parser.add_argument("--user", "-u", required=True)
    webhook_parser.add_argument("--price-id")
    webhook_parser.add_argument("--status",
                                choices=["active", "canceled", "past_due", "trialing", "incomplete"])

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    _configure_logging(args.verbose)

    # Dispatch to command handler
    commands = {
        "status": cmd_status,
        "add-limit": cmd_add_limit,
        "add-alert": cmd_add_alert,
        "spend": cmd_spend,
        "webhook": cmd_webhook,
    }

    storage = SQLiteStorage(db_path=args.db)
    try:
        return commands[args.command](args, storage)
    finally:
        storage.close()


if __name__ == "__main__":
    sys.exit(main())
