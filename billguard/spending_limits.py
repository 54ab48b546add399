"""
Spending limits for billguard.

"Know before you overspend."

Features:
- Period-based spend tracking against capped limits
- Lazy window resets (call check_and_reset_limits before reading spend)
- Threshold alerts on limits and on the monthly total
- Hard blocking of spend that would break a limit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from billguard.alerts import (
    clear_trigger_state,
    create_spending_alert,
    evaluate_alerts,
    get_spending_percentage,
)
from billguard.config import get_setting
from billguard.models import (
    AlertChannel,
    AlertFrequency,
    SpendCategory,
    SpendingAlert,
    SpendingHistory,
    SpendingLimit,
    SpendingLimitsConfig,
    TransactionStatus,
    new_id,
)
from billguard.periods import (
    Period,
    calculate_period_dates,
    format_period,
    get_period_days_remaining,
    resolve_now,
)
from billguard.storage import InMemoryStorage, StorageBackend


logger = logging.getLogger("billguard.spending_limits")

__all__ = [
    "SpendCheck",
    "TransactionResult",
    "SpendOutcome",
    "NotFoundError",
    "SpendingController",
    "initialize_spending_limits",
    "create_spending_limit",
    "should_reset_limit",
    "reset_spending_limit",
    "check_and_reset_limits",
    "roll_running_totals",
    "get_spending_percentage",
    "is_limit_exceeded",
    "is_approaching_limit",
    "can_spend",
    "add_spending_transaction",
]


@dataclass
class SpendCheck:
    """Result of asking whether a spend is allowed."""
    allowed: bool
    reason: Optional[str] = None
    limit_id: Optional[str] = None  # The limit that blocked the spend


@dataclass
class TransactionResult:
    """Updated config plus the alerts that fired while applying a transaction."""
    config: SpendingLimitsConfig
    triggered_alerts: list[SpendingAlert]
    transaction: SpendingHistory


class NotFoundError(LookupError):
    """Raised when a limit or alert id does not exist."""
    pass


# =========================================================================
# Limit lifecycle
# =========================================================================

def initialize_spending_limits() -> SpendingLimitsConfig:
    """Create an empty config with notifications on."""
    return SpendingLimitsConfig()


def create_spending_limit(
    amount: float,
    period: Period | str,
    block_on_exceed: bool = True,
    now: Optional[datetime] = None,
) -> SpendingLimit:
    """
    Create a limit with no spend and a window containing ``now``.

    Example:
        ```python
        limit = create_spending_limit(100.0, Period.MONTHLY)
        limit.current_spend  # 0.0
        ```
    """
    period = Period(period)
    window = calculate_period_dates(period, now)
    return SpendingLimit(
        id=new_id("limit"),
        amount=amount,
        period=period,
        current_spend=0.0,
        start_date=window.start,
        reset_date=window.reset,
        block_on_exceed=block_on_exceed,
    )


def should_reset_limit(limit: SpendingLimit, now: Optional[datetime] = None) -> bool:
    now = resolve_now(now)
    return now >= limit.reset_date


def reset_spending_limit(limit: SpendingLimit, now: Optional[datetime] = None) -> SpendingLimit:
    """Start a fresh window: zero spend and restart every alert's throttle clock."""
    window = calculate_period_dates(limit.period, now)
    return replace(
        limit,
        current_spend=0.0,
        start_date=window.start,
        reset_date=window.reset,
        alerts=[clear_trigger_state(a) for a in limit.alerts],
    )


def check_and_reset_limits(
    limits: Iterable[SpendingLimit],
    now: Optional[datetime] = None,
) -> list[SpendingLimit]:
    """Reset every expired limit. Others pass through unchanged."""
    now = resolve_now(now)
    return [
        reset_spending_limit(limit, now) if should_reset_limit(limit, now) else limit
        for limit in limits
    ]


def roll_running_totals(
    config: SpendingLimitsConfig,
    now: Optional[datetime] = None,
) -> SpendingLimitsConfig:
    """Zero the month/year totals when the newest ledger entry is from an earlier window."""
    if not config.history:
        return config

    now = resolve_now(now)
    newest = max(entry.date for entry in config.history)
    month_total = config.total_spend_this_month
    year_total = config.total_spend_this_year

    if newest < calculate_period_dates(Period.MONTHLY, now).start:
        month_total = 0.0
    if newest < calculate_period_dates(Period.YEARLY, now).start:
        year_total = 0.0

    if (month_total, year_total) == (config.total_spend_this_month, config.total_spend_this_year):
        return config
    return replace(config, total_spend_this_month=month_total, total_spend_this_year=year_total)


# =========================================================================
# Queries
# =========================================================================

def is_limit_exceeded(limit: SpendingLimit) -> bool:
    return limit.current_spend >= limit.amount


def is_approaching_limit(limit: SpendingLimit, threshold: Optional[float] = None) -> bool:
    """True when spend is at or over ``threshold`` percent but under 100%."""
    if threshold is None:
        threshold = get_setting("approaching_threshold_pct")
    percentage = get_spending_percentage(limit.current_spend, limit.amount)
    return threshold <= percentage < 100


def can_spend(limits: Iterable[SpendingLimit], amount: float) -> SpendCheck:
    """
    Check ``amount`` against every enabled blocking limit.

    The first limit that would be pushed over its cap decides the answer.
    """
    for limit in limits:
        if not (limit.enabled and limit.block_on_exceed):
            continue
        if limit.current_spend + amount > limit.amount:
            return SpendCheck(
                allowed=False,
                reason=(
                    f"This transaction would exceed your {limit.period.value} "
                    f"spending limit of ${limit.amount:.2f}"
                ),
                limit_id=limit.id,
            )
    return SpendCheck(allowed=True)


# =========================================================================
# Transactions
# =========================================================================

def add_spending_transaction(
    config: SpendingLimitsConfig,
    amount: float,
    description: str,
    category: SpendCategory | str,
    now: Optional[datetime] = None,
) -> TransactionResult:
    """
    Apply a completed spend to ``config``.

    Adds ``amount`` to every enabled limit and to the running totals,
    prepends a ledger entry and evaluates every alert once. The input
    config is left untouched.

    Does not reset expired windows; call ``check_and_reset_limits`` first.
    """
    now = resolve_now(now)
    transaction = SpendingHistory(
        id=new_id("txn"),
        date=now,
        amount=amount,
        description=description,
        category=SpendCategory(category),
        status=TransactionStatus.COMPLETED,
    )

    fired: list[SpendingAlert] = []
    updated_limits = []
    for limit in config.limits:
        if not limit.enabled:
            updated_limits.append(limit)
            continue
        new_spend = limit.current_spend + amount
        alerts = evaluate_alerts(limit.alerts, new_spend, limit.amount, now, fired)
        updated_limits.append(replace(limit, current_spend=new_spend, alerts=alerts))

    month_total = config.total_spend_this_month + amount
    global_alerts = evaluate_alerts(config.global_alerts, month_total, None, now, fired)

    updated = replace(
        config,
        limits=updated_limits,
        global_alerts=global_alerts,
        history=[transaction, *config.history],
        total_spend_this_month=month_total,
        total_spend_this_year=config.total_spend_this_year + amount,
    )
    return TransactionResult(config=updated, triggered_alerts=fired, transaction=transaction)


# =========================================================================
# Controller
# =========================================================================

@dataclass
class SpendOutcome:
    """Result of ``SpendingController.record_spend``."""
    allowed: bool
    config: SpendingLimitsConfig
    reason: Optional[str] = None
    transaction: Optional[SpendingHistory] = None
    triggered_alerts: list[SpendingAlert] = field(default_factory=list)


AlertNotifier = Callable[[SpendingAlert, dict], None]


class SpendingController:
    """
    Per-user spending limits backed by a key-value store.

    Every mutation loads the whole config, applies one operation and
    writes the whole config back.

    Example:
        ```python
        controller = SpendingController(storage=SQLiteStorage("billguard.db"))

        limit = controller.add_limit("user_123", 100.0, Period.MONTHLY)
        controller.add_alert("user_123", "80% of budget", threshold=80.0,
                             percentage=80, limit_id=limit.id)

        outcome = controller.record_spend(
            "user_123", 29.99, "Pro Subscription - Monthly", "subscription",
            enforce=True,
        )
        if not outcome.allowed:
            print(outcome.reason)
        ```
    """

    KEY_PREFIX = "spending-limits:"

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        notifier: Optional[AlertNotifier] = None,
    ):
        self._storage = storage or InMemoryStorage()
        self._notifier = notifier

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def get_config(self, user_id: str) -> SpendingLimitsConfig:
        """Load the stored config, or an empty one on first use."""
        data = self._storage.get(self._key(user_id))
        if data is None:
            return initialize_spending_limits()
        return SpendingLimitsConfig.from_dict(data)

    def save_config(self, user_id: str, config: SpendingLimitsConfig) -> SpendingLimitsConfig:
        self._storage.set(self._key(user_id), config.to_dict())
        return config

    def check_and_reset(self, user_id: str, now: Optional[datetime] = None) -> SpendingLimitsConfig:
        """Load the config with expired windows reset, persisting any change."""
        now = resolve_now(now)
        config = self.get_config(user_id)
        refreshed = roll_running_totals(
            replace(config, limits=check_and_reset_limits(config.limits, now)),
            now,
        )
        if refreshed != config:
            logger.info("Reset expired spending windows for user %s", user_id)
            self.save_config(user_id, refreshed)
        return refreshed

    # -------------------------------------------------------------------------
    # Limits
    # -------------------------------------------------------------------------

    def add_limit(
        self,
        user_id: str,
        amount: float,
        period: Period | str,
        block_on_exceed: bool = True,
        now: Optional[datetime] = None,
    ) -> SpendingLimit:
        config = self.get_config(user_id)
        limit = create_spending_limit(amount, period, block_on_exceed, now=now)
        self.save_config(user_id, replace(config, limits=[*config.limits, limit]))
        return limit

    def remove_limit(self, user_id: str, limit_id: str) -> bool:
        """Remove a limit. Returns True if existed."""
        config = self.get_config(user_id)
        remaining = [l for l in config.limits if l.id != limit_id]
        if len(remaining) == len(config.limits):
            return False
        self.save_config(user_id, replace(config, limits=remaining))
        return True

    def set_limit_enabled(self, user_id: str, limit_id: str, enabled: bool) -> SpendingLimit:
        config = self.get_config(user_id)
        limit = self._find_limit(config, limit_id)
        updated = replace(limit, enabled=enabled)
        self.save_config(
            user_id,
            replace(config, limits=[updated if l.id == limit_id else l for l in config.limits]),
        )
        return updated

    def _find_limit(self, config: SpendingLimitsConfig, limit_id: str) -> SpendingLimit:
        for limit in config.limits:
            if limit.id == limit_id:
                return limit
        raise NotFoundError(f"Unknown spending limit '{limit_id}'")

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def add_alert(
        self,
        user_id: str,
        name: str,
        threshold: float,
        percentage: Optional[float] = None,
        frequency: AlertFrequency | str = AlertFrequency.ONCE,
        channels: Optional[Iterable[AlertChannel | str]] = None,
        limit_id: Optional[str] = None,
    ) -> SpendingAlert:
        """
        Add an alert to a limit, or to the global list when ``limit_id`` is None.

        Global alerts are evaluated against the running monthly total and
        ignore ``percentage``.
        """
        config = self.get_config(user_id)
        alert = create_spending_alert(name, threshold, percentage, frequency, channels)

        if limit_id is None:
            config = replace(config, global_alerts=[*config.global_alerts, alert])
        else:
            limit = self._find_limit(config, limit_id)
            updated = replace(limit, alerts=[*limit.alerts, alert])
            config = replace(
                config,
                limits=[updated if l.id == limit_id else l for l in config.limits],
            )

        self.save_config(user_id, config)
        return alert

    def remove_alert(self, user_id: str, alert_id: str) -> bool:
        """Remove an alert wherever it lives. Returns True if existed."""
        config = self.get_config(user_id)
        updated = self._map_alerts(config, alert_id, lambda alert: None)
        if updated is None:
            return False
        self.save_config(user_id, updated)
        return True

    def set_alert_enabled(self, user_id: str, alert_id: str, enabled: bool) -> SpendingAlert:
        config = self.get_config(user_id)
        changed: list[SpendingAlert] = []

        def toggle(alert: SpendingAlert) -> SpendingAlert:
            alert = replace(alert, enabled=enabled)
            changed.append(alert)
            return alert

        updated = self._map_alerts(config, alert_id, toggle)
        if updated is None:
            raise NotFoundError(f"Unknown spending alert '{alert_id}'")
        self.save_config(user_id, updated)
        return changed[0]

    def _map_alerts(
        self,
        config: SpendingLimitsConfig,
        alert_id: str,
        fn: Callable[[SpendingAlert], Optional[SpendingAlert]],
    ) -> Optional[SpendingLimitsConfig]:
        """Apply ``fn`` to the matching alert; a None result drops it."""
        found = False

        def apply(alerts: list[SpendingAlert]) -> list[SpendingAlert]:
            nonlocal found
            result = []
            for alert in alerts:
                if alert.id == alert_id:
                    found = True
                    alert = fn(alert)
                    if alert is None:
                        continue
                result.append(alert)
            return result

        limits = [replace(l, alerts=apply(l.alerts)) for l in config.limits]
        global_alerts = apply(config.global_alerts)
        if not found:
            return None
        return replace(config, limits=limits, global_alerts=global_alerts)

    def set_notifications_enabled(self, user_id: str, enabled: bool) -> SpendingLimitsConfig:
        config = self.get_config(user_id)
        return self.save_config(user_id, replace(config, notifications_enabled=enabled))

    # -------------------------------------------------------------------------
    # Spend
    # -------------------------------------------------------------------------

    def can_spend(self, user_id: str, amount: float, now: Optional[datetime] = None) -> SpendCheck:
        config = self.check_and_reset(user_id, now)
        return can_spend(config.limits, amount)

    def record_spend(
        self,
        user_id: str,
        amount: float,
        description: str,
        category: SpendCategory | str,
        enforce: bool = False,
        now: Optional[datetime] = None,
    ) -> SpendOutcome:
        """
        Record a completed spend for a user.

        Args:
            user_id: The user who spent.
            amount: Amount in dollars. Must not be negative.
            description: Free-text ledger description.
            category: subscription, generation, addon or overage.
            enforce: If True, refuse the spend when a blocking limit would
                be exceeded. Nothing is recorded in that case.
            now: Transaction instant.

        Returns:
            SpendOutcome with the updated config and the alerts that fired.
        """
        if amount < 0:
            raise ValueError("amount must not be negative")

        now = resolve_now(now)
        config = self.check_and_reset(user_id, now)

        if enforce:
            check = can_spend(config.limits, amount)
            if not check.allowed:
                logger.info("Blocked spend of $%.2f for user %s: %s", amount, user_id, check.reason)
                return SpendOutcome(allowed=False, config=config, reason=check.reason)

        result = add_spending_transaction(config, amount, description, category, now=now)
        self.save_config(user_id, result.config)

        if result.triggered_alerts:
            logger.info(
                "User %s spend of $%.2f fired %d alert(s)",
                user_id, amount, len(result.triggered_alerts),
            )
            if result.config.notifications_enabled:
                self._notify(user_id, result.config, result.triggered_alerts, now)

        return SpendOutcome(
            allowed=True,
            config=result.config,
            transaction=result.transaction,
            triggered_alerts=result.triggered_alerts,
        )

    def _notify(
        self,
        user_id: str,
        config: SpendingLimitsConfig,
        alerts: list[SpendingAlert],
        now: datetime,
    ) -> None:
        if self._notifier is None:
            return

        for alert in alerts:
            info = {
                "user_id": user_id,
                "alert_id": alert.id,
                "name": alert.name,
                "channels": [c.value for c in alert.channels],
                "total_this_month": config.total_spend_this_month,
                "trigger_count": alert.trigger_count,
                "timestamp": now.isoformat(),
            }
            try:
                self._notifier(alert, info)
            except Exception:
                logger.exception("Alert notifier failed for alert %s", alert.id)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_summary(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """Current status of every limit plus running totals."""
        now = resolve_now(now)
        config = self.check_and_reset(user_id, now)

        return {
            "user_id": user_id,
            "limits": [
                {
                    "id": limit.id,
                    "period": format_period(limit.period),
                    "amount": limit.amount,
                    "current_spend": limit.current_spend,
                    "percentage": get_spending_percentage(limit.current_spend, limit.amount),
                    "exceeded": is_limit_exceeded(limit),
                    "approaching": is_approaching_limit(limit),
                    "enabled": limit.enabled,
                    "block_on_exceed": limit.block_on_exceed,
                    "days_remaining": get_period_days_remaining(limit.reset_date, now),
                }
                for limit in config.limits
            ],
            "global_alerts": len(config.global_alerts),
            "total_spend_this_month": config.total_spend_this_month,
            "total_spend_this_year": config.total_spend_this_year,
            "transactions": len(config.history),
            "notifications_enabled": config.notifications_enabled,
            "timestamp": now.isoformat(),
        }
