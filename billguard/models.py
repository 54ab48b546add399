"""
Shared data models.

Every aggregate round-trips through ``to_dict``/``from_dict`` so storage
backends can persist whole values. Instants are exported as epoch
milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from enum import Enum
from typing import Any, Optional
import uuid

from billguard.periods import Period, as_utc


class AlertFrequency(str, Enum):
    """How often an alert may fire while its threshold holds."""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    ALWAYS = "always"


class AlertChannel(str, Enum):
    """Delivery channels for alert notifications."""
    EMAIL = "email"
    PUSH = "push"
    BOTH = "both"


class SpendCategory(str, Enum):
    SUBSCRIPTION = "subscription"
    GENERATION = "generation"
    ADDON = "addon"
    OVERAGE = "overage"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class Tier(str, Enum):
    """Entitlement classes."""
    FREE = "free"
    PRO = "pro"


class SubscriptionState(str, Enum):
    """Subscription status as reported by the billing provider."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def to_millis(moment: Optional[datetime]) -> Optional[int]:
    if moment is None:
        return None
    return (as_utc(moment) - EPOCH) // timedelta(milliseconds=1)


def from_millis(value: Optional[int | float]) -> Optional[datetime]:
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=value)


@dataclass
class SpendingAlert:
    """Threshold rule attached to a limit or to the global alert list."""
    id: str
    name: str
    threshold: float
    percentage: Optional[float] = None  # Percent of the owning limit's cap
    frequency: AlertFrequency = AlertFrequency.ONCE
    channels: list[AlertChannel] = field(default_factory=lambda: [AlertChannel.EMAIL])
    enabled: bool = True
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "threshold": self.threshold,
            "percentage": self.percentage,
            "frequency": self.frequency.value,
            "channels": [c.value for c in self.channels],
            "enabled": self.enabled,
            "lastTriggered": to_millis(self.last_triggered),
            "triggerCount": self.trigger_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpendingAlert":
        return cls(
            id=data["id"],
            name=data["name"],
            threshold=data["threshold"],
            percentage=data.get("percentage"),
            frequency=AlertFrequency(data.get("frequency", "once")),
            channels=[AlertChannel(c) for c in data.get("channels", ["email"])],
            enabled=data.get("enabled", True),
            last_triggered=from_millis(data.get("lastTriggered")),
            trigger_count=data.get("triggerCount", 0),
        )


@dataclass
class SpendingLimit:
    """A capped budget over a recurring period."""
    id: str
    amount: float
    period: Period
    current_spend: float
    start_date: datetime
    reset_date: datetime
    enabled: bool = True
    block_on_exceed: bool = True  # If True, can_spend refuses spend over the cap
    alerts: list[SpendingAlert] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "period": self.period.value,
            "currentSpend": self.current_spend,
            "startDate": to_millis(self.start_date),
            "resetDate": to_millis(self.reset_date),
            "enabled": self.enabled,
            "blockOnExceed": self.block_on_exceed,
            "alerts": [a.to_dict() for a in self.alerts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpendingLimit":
        return cls(
            id=data["id"],
            amount=data["amount"],
            period=Period(data["period"]),
            current_spend=data.get("currentSpend", 0.0),
            start_date=from_millis(data["startDate"]),
            reset_date=from_millis(data["resetDate"]),
            enabled=data.get("enabled", True),
            block_on_exceed=data.get("blockOnExceed", True),
            alerts=[SpendingAlert.from_dict(a) for a in data.get("alerts", [])],
        )


@dataclass(frozen=True)
class SpendingHistory:
    """Immutable ledger entry for one spend event."""
    id: str
    date: datetime
    amount: float
    description: str
    category: SpendCategory
    status: TransactionStatus = TransactionStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": to_millis(self.date),
            "amount": self.amount,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpendingHistory":
        return cls(
            id=data["id"],
            date=from_millis(data["date"]),
            amount=data["amount"],
            description=data.get("description", ""),
            category=SpendCategory(data["category"]),
            status=TransactionStatus(data.get("status", "completed")),
        )


@dataclass
class SpendingLimitsConfig:
    """Aggregate root for a user's limits, alerts and spend ledger."""
    limits: list[SpendingLimit] = field(default_factory=list)
    global_alerts: list[SpendingAlert] = field(default_factory=list)
    history: list[SpendingHistory] = field(default_factory=list)  # Newest first
    total_spend_this_month: float = 0.0
    total_spend_this_year: float = 0.0
    notifications_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "limits": [l.to_dict() for l in self.limits],
            "globalAlerts": [a.to_dict() for a in self.global_alerts],
            "history": [h.to_dict() for h in self.history],
            "totalSpendThisMonth": self.total_spend_this_month,
            "totalSpendThisYear": self.total_spend_this_year,
            "notificationsEnabled": self.notifications_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpendingLimitsConfig":
        return cls(
            limits=[SpendingLimit.from_dict(l) for l in data.get("limits", [])],
            global_alerts=[SpendingAlert.from_dict(a) for a in data.get("globalAlerts", [])],
            history=[SpendingHistory.from_dict(h) for h in data.get("history", [])],
            total_spend_this_month=data.get("totalSpendThisMonth", 0.0),
            total_spend_this_year=data.get("totalSpendThisYear", 0.0),
            notifications_enabled=data.get("notificationsEnabled", True),
        )


@dataclass
class SubscriptionStatus:
    """Generation quota and usage for the current cycle."""
    tier: Tier
    generations_used: int
    generations_limit: Optional[int]  # None means unlimited
    reset_date: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "generationsUsed": self.generations_used,
            "generationsLimit": self.generations_limit,
            "resetDate": to_millis(self.reset_date),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubscriptionStatus":
        return cls(
            tier=Tier(data["tier"]),
            generations_used=data.get("generationsUsed", 0),
            generations_limit=data.get("generationsLimit"),
            reset_date=from_millis(data["resetDate"]),
        )


@dataclass
class Subscription:
    """The billing provider's view of a customer's subscription."""
    id: Optional[str]
    status: SubscriptionState
    current_period_end: datetime
    cancel_at_period_end: bool
    price_id: str
    customer_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "status": self.status.value,
            "currentPeriodEnd": to_millis(self.current_period_end),
            "cancelAtPeriodEnd": self.cancel_at_period_end,
            "priceId": self.price_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscription":
        return cls(
            id=data.get("id"),
            customer_id=data.get("customerId"),
            status=SubscriptionState(data["status"]),
            current_period_end=from_millis(data["currentPeriodEnd"]),
            cancel_at_period_end=data.get("cancelAtPeriodEnd", False),
            price_id=data["priceId"],
        )
