"""
Subscription tiers and generation quota.

Entitlement is a pure lookup from tier. Usage resets lazily: call
``reset_monthly_usage`` (or read through ``SubscriptionService``) before
making quota decisions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from billguard.alerts import get_spending_percentage
from billguard.config import get_setting
from billguard.models import Subscription, SubscriptionState, SubscriptionStatus, Tier
from billguard.periods import first_of_next_month, resolve_now
from billguard.storage import InMemoryStorage, StorageBackend


logger = logging.getLogger("billguard.subscription")


@dataclass(frozen=True)
class TierFeatures:
    image_generation: bool
    video_generation: bool
    style_presets: bool
    image_editing: bool
    ai_assistant: bool
    priority_support: bool
    hd_quality: bool
    background_removal: bool
    advanced_body_editing: bool
    pro_filters: bool


@dataclass(frozen=True)
class TierEntitlement:
    """What a tier is allowed to do."""
    generations_per_month: Optional[int]  # None means unlimited
    max_reference_images: int
    features: TierFeatures


SUBSCRIPTION_LIMITS: dict[Tier, TierEntitlement] = {
    Tier.FREE: TierEntitlement(
        generations_per_month=10,
        max_reference_images=3,
        features=TierFeatures(
            image_generation=True,
            video_generation=False,
            style_presets=True,
            image_editing=True,
            ai_assistant=True,
            priority_support=False,
            hd_quality=False,
            background_removal=False,
            advanced_body_editing=False,
            pro_filters=False,
        ),
    ),
    Tier.PRO: TierEntitlement(
        generations_per_month=None,
        max_reference_images=5,
        features=TierFeatures(
            image_generation=True,
            video_generation=True,
            style_presets=True,
            image_editing=True,
            ai_assistant=True,
            priority_support=True,
            hd_quality=True,
            background_removal=True,
            advanced_body_editing=True,
            pro_filters=True,
        ),
    ),
}

# Provider states that grant pro until the paid period runs out
_GRACE_STATES = {SubscriptionState.PAST_DUE, SubscriptionState.CANCELED}
_PAID_STATES = {SubscriptionState.ACTIVE, SubscriptionState.TRIALING}


class GenerationLimitReached(Exception):
    """Raised when a free-tier user has no generations left this cycle."""
    def __init__(self, used: int, limit: Optional[int], reset_date: datetime):
        self.used = used
        self.limit = limit
        self.reset_date = reset_date
        super().__init__(
            f"Monthly generation limit reached: {used} of {limit} used, "
            f"resets {reset_date.date().isoformat()}"
        )


def get_entitlement(tier: Tier | str) -> TierEntitlement:
    return SUBSCRIPTION_LIMITS[Tier(tier)]


def has_feature(tier: Tier | str, feature: str) -> bool:
    """Check a feature flag by attribute name (e.g. ``"video_generation"``)."""
    features = get_entitlement(tier).features
    if not hasattr(features, feature):
        raise ValueError(f"Unknown feature '{feature}'")
    return getattr(features, feature)


def get_usage_percentage(used: int, limit: Optional[int]) -> int:
    """Usage as a whole percentage, capped at 100. Unlimited or zero quota gives 0."""
    return get_spending_percentage(used, limit or 0)


def calculate_next_reset_date(now: Optional[datetime] = None) -> datetime:
    return first_of_next_month(resolve_now(now))


def initialize_subscription(now: Optional[datetime] = None) -> SubscriptionStatus:
    return SubscriptionStatus(
        tier=Tier.FREE,
        generations_used=0,
        generations_limit=SUBSCRIPTION_LIMITS[Tier.FREE].generations_per_month,
        reset_date=calculate_next_reset_date(now),
    )


def can_generate(status: SubscriptionStatus) -> bool:
    if status.tier == Tier.PRO:
        return True
    return status.generations_used < (status.generations_limit or 0)


def get_remaining_generations(status: SubscriptionStatus) -> Optional[int]:
    """Generations left this cycle. None means unlimited."""
    if status.tier == Tier.PRO:
        return None
    return max(0, (status.generations_limit or 0) - status.generations_used)


def should_show_upgrade_prompt(status: SubscriptionStatus) -> bool:
    if status.tier == Tier.PRO:
        return False
    percentage = get_usage_percentage(status.generations_used, status.generations_limit)
    return percentage >= get_setting("upgrade_prompt_pct")


def reset_monthly_usage(
    status: SubscriptionStatus,
    now: Optional[datetime] = None,
) -> SubscriptionStatus:
    """Zero usage once the reset instant has passed. Otherwise a no-op."""
    now = resolve_now(now)
    if now >= status.reset_date:
        return replace(
            status,
            generations_used=0,
            reset_date=calculate_next_reset_date(now),
        )
    return status


def record_generation(status: SubscriptionStatus) -> SubscriptionStatus:
    """
    Consume one generation.

    Raises:
        GenerationLimitReached: If the quota for this cycle is used up.
    """
    if not can_generate(status):
        raise GenerationLimitReached(
            status.generations_used, status.generations_limit, status.reset_date
        )
    return replace(status, generations_used=status.generations_used + 1)


def tier_for_subscription(
    subscription: Optional[Subscription],
    now: Optional[datetime] = None,
) -> Tier:
    """
    Derive the entitlement tier from the provider's subscription record.

    Active and trialing subscriptions are pro. Past-due and canceled
    subscriptions stay pro until ``current_period_end``. Anything else is free.
    """
    if subscription is None:
        return Tier.FREE
    if subscription.status in _PAID_STATES:
        return Tier.PRO
    if subscription.status in _GRACE_STATES:
        now = resolve_now(now)
        return Tier.PRO if now < subscription.current_period_end else Tier.FREE
    return Tier.FREE


def apply_subscription(
    status: SubscriptionStatus,
    subscription: Optional[Subscription],
    now: Optional[datetime] = None,
) -> SubscriptionStatus:
    """Rewrite tier and quota from ``subscription``, keeping usage counters."""
    tier = tier_for_subscription(subscription, now)
    return replace(
        status,
        tier=tier,
        generations_limit=SUBSCRIPTION_LIMITS[tier].generations_per_month,
    )


class SubscriptionService:
    """
    Per-user subscription status backed by a key-value store.

    ``handle_subscription_update`` is the callback handed to
    ``WebhookProcessor``; it is the only path that changes a user's tier.

    Example:
        ```python
        service = SubscriptionService(storage)
        processor = WebhookProcessor()
        processor.process_event(payload, service.handle_subscription_update)

        if service.can_generate("user_123"):
            service.consume_generation("user_123")
        ```
    """

    STATUS_PREFIX = "subscription-status:"
    SUBSCRIPTION_PREFIX = "stripe-subscription:"

    def __init__(self, storage: Optional[StorageBackend] = None):
        self._storage = storage or InMemoryStorage()

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        data = self._storage.get(f"{self.SUBSCRIPTION_PREFIX}{user_id}")
        return Subscription.from_dict(data) if data is not None else None

    def get_status(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        """
        Load the user's status with rollover and grace expiry applied.

        A missing status is created on the free tier.
        """
        now = resolve_now(now)
        key = f"{self.STATUS_PREFIX}{user_id}"
        data = self._storage.get(key)
        stored = SubscriptionStatus.from_dict(data) if data is not None else None

        status = reset_monthly_usage(stored or initialize_subscription(now), now)
        status = apply_subscription(status, self.get_subscription(user_id), now)

        if status != stored:
            self._storage.set(key, status.to_dict())
        return status

    def get_entitlement(self, user_id: str, now: Optional[datetime] = None) -> TierEntitlement:
        return get_entitlement(self.get_status(user_id, now).tier)

    def can_generate(self, user_id: str, now: Optional[datetime] = None) -> bool:
        return can_generate(self.get_status(user_id, now))

    def consume_generation(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        """
        Count one generation against the user's quota.

        Raises:
            GenerationLimitReached: If the free quota is used up.
        """
        status = record_generation(self.get_status(user_id, now))
        self._storage.set(f"{self.STATUS_PREFIX}{user_id}", status.to_dict())
        return status

    def handle_subscription_update(
        self,
        user_id: str,
        subscription: Subscription,
        now: Optional[datetime] = None,
    ) -> SubscriptionStatus:
        """Replace the stored provider subscription and re-derive the tier."""
        previous = self.get_status(user_id, now)
        self._storage.set(f"{self.SUBSCRIPTION_PREFIX}{user_id}", subscription.to_dict())
        status = self.get_status(user_id, now)

        if status.tier != previous.tier:
            logger.info(
                "User %s moved from %s to %s (subscription %s)",
                user_id, previous.tier.value, status.tier.value, subscription.status.value,
            )
        return status
