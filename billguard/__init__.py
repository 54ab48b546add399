"""
billguard - Spending limits, alerts and subscription entitlement.

Spending limits:
    from billguard import SpendingController, Period

    controller = SpendingController()
    limit = controller.add_limit("user_123", 100.00, Period.MONTHLY)
    controller.add_alert("user_123", "Heads up", threshold=80.0,
                         percentage=80, frequency="daily", limit_id=limit.id)

    outcome = controller.record_spend("user_123", 85.00, "Video Generation (x5)",
                                      "generation", enforce=True)
    print(outcome.triggered_alerts)   # [SpendingAlert(name='Heads up', ...)]

Subscriptions:
    from billguard import SubscriptionService, WebhookProcessor

    service = SubscriptionService()
    processor = WebhookProcessor()
    processor.process_event(payload, service.handle_subscription_update)

    service.can_generate("user_123")   # True once the user is on pro
"""

from billguard.periods import (
    Period,
    PeriodWindow,
    calculate_period_dates,
    format_period,
    get_period_days_remaining,
)
from billguard.models import (
    AlertChannel,
    AlertFrequency,
    SpendCategory,
    SpendingAlert,
    SpendingHistory,
    SpendingLimit,
    SpendingLimitsConfig,
    Subscription,
    SubscriptionState,
    SubscriptionStatus,
    Tier,
    TransactionStatus,
)
from billguard.alerts import create_spending_alert, get_spending_percentage, should_trigger_alert
from billguard.spending_limits import (
    NotFoundError,
    SpendCheck,
    SpendOutcome,
    SpendingController,
    TransactionResult,
    add_spending_transaction,
    can_spend,
    check_and_reset_limits,
    create_spending_limit,
    initialize_spending_limits,
    is_approaching_limit,
    is_limit_exceeded,
    reset_spending_limit,
    should_reset_limit,
)
from billguard.subscription import (
    SUBSCRIPTION_LIMITS,
    GenerationLimitReached,
    SubscriptionService,
    TierEntitlement,
    can_generate,
    get_entitlement,
    get_remaining_generations,
    initialize_subscription,
    reset_monthly_usage,
    should_show_upgrade_prompt,
)
from billguard.webhooks import (
    BillingEventType,
    WebhookErrorCode,
    WebhookProcessor,
    WebhookResult,
    simulate_webhook,
)
from billguard.storage import InMemoryStorage, SQLiteStorage, StorageError


__version__ = "1.0.0"
__all__ = [
    # Periods
    "Period",
    "PeriodWindow",
    "calculate_period_dates",
    "format_period",
    "get_period_days_remaining",
    # Models
    "AlertChannel",
    "AlertFrequency",
    "SpendCategory",
    "SpendingAlert",
    "SpendingHistory",
    "SpendingLimit",
    "SpendingLimitsConfig",
    "Subscription",
    "SubscriptionState",
    "SubscriptionStatus",
    "Tier",
    "TransactionStatus",
    # Spending limits and alerts
    "create_spending_alert",
    "get_spending_percentage",
    "should_trigger_alert",
    "NotFoundError",
    "SpendCheck",
    "SpendOutcome",
    "SpendingController",
    "TransactionResult",
    "add_spending_transaction",
    "can_spend",
    "check_and_reset_limits",
    "create_spending_limit",
    "initialize_spending_limits",
    "is_approaching_limit",
    "is_limit_exceeded",
    "reset_spending_limit",
    "should_reset_limit",
    # Subscriptions
    "SUBSCRIPTION_LIMITS",
    "GenerationLimitReached",
    "SubscriptionService",
    "TierEntitlement",
    "can_generate",
    "get_entitlement",
    "get_remaining_generations",
    "initialize_subscription",
    "reset_monthly_usage",
    "should_show_upgrade_prompt",
    # Webhooks
    "BillingEventType",
    "WebhookErrorCode",
    "WebhookProcessor",
    "WebhookResult",
    "simulate_webhook",
    # Storage
    "InMemoryStorage",
    "SQLiteStorage",
    "StorageError",
]
