"""
Basic usage examples for billguard.

Runs entirely in memory.
"""

from billguard import (
    Period,
    SpendingController,
    SubscriptionService,
    WebhookProcessor,
    get_remaining_generations,
)
from billguard.webhooks import simulate_webhook


def example_spending_limits():
    """Cap monthly spend and get warned on the way."""
    print("=" * 60)
    print("Example 1: Spending Limits")
    print("=" * 60)

    def notify(alert, info):
        print(f"  -> notify via {info['channels']}: {alert.name}")

    controller = SpendingController(notifier=notify)
    limit = controller.add_limit("user_123", 100.00, Period.MONTHLY)
    controller.add_alert("user_123", "80% of monthly budget", threshold=80.0,
                         percentage=80, frequency="daily", limit_id=limit.id)

    for amount in (29.99, 45.00, 20.00):
        outcome = controller.record_spend("user_123", amount, "Video Generation", "generation",
                                          enforce=True)
        print(f"Spend ${amount:.2f}: {'ok' if outcome.allowed else outcome.reason}")

    summary = controller.get_summary("user_123")
    row = summary["limits"][0]
    print(f"Limit: ${row['current_spend']:.2f} of ${row['amount']:.2f} ({row['percentage']}%)")
    print()


def example_subscription():
    """Upgrade through a checkout event and lose pro when it is deleted."""
    print("=" * 60)
    print("Example 2: Subscription Lifecycle")
    print("=" * 60)

    service = SubscriptionService()
    processor = WebhookProcessor()

    for _ in range(10):
        service.consume_generation("user_123")
    print(f"Free tier, can generate: {service.can_generate('user_123')}")

    processor.process_event(
        simulate_webhook("checkout.session.completed", "user_123"),
        service.handle_subscription_update,
    )
    status = service.get_status("user_123")
    remaining = get_remaining_generations(status)
    print(f"After checkout: tier={status.tier.value}, remaining={remaining or 'unlimited'}")

    processor.process_event(
        simulate_webhook("customer.subscription.deleted", "user_123"),
        service.handle_subscription_update,
    )
    print(f"After deletion: tier={service.get_status('user_123').tier.value}")

    for log in processor.get_webhook_logs():
        print(f"  {log.event_type}: {log.status}")
    print()


if __name__ == "__main__":
    example_spending_limits()
    example_subscription()
