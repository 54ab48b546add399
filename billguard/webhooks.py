"""
Billing webhook processing.

Turns provider events into ``(user_id, Subscription)`` updates handed to a
caller-supplied callback. The processor owns no subscription storage, and
replaying an event derives the same subscription record.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from billguard.config import get_setting
from billguard.models import Subscription, SubscriptionState
from billguard.periods import resolve_now


logger = logging.getLogger("billguard.webhooks")


class BillingEventType(str, Enum):
    """Provider events the processor understands."""
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.payment_succeeded"
    INVOICE_FAILED = "invoice.payment_failed"


class WebhookErrorCode(str, Enum):
    MISSING_USER_ID = "MissingUserId"
    INVALID_PAYLOAD = "InvalidPayload"
    CALLBACK_FAILED = "CallbackFailed"


# =========================================================================
# Provider payloads
# =========================================================================

class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EventMetadata(_ProviderModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    price_id: Optional[str] = Field(default=None, alias="priceId")


class PriceRef(_ProviderModel):
    id: str


class SubscriptionItem(_ProviderModel):
    price: Optional[PriceRef] = None


class SubscriptionItems(_ProviderModel):
    data: list[SubscriptionItem] = Field(default_factory=list)


class CheckoutSessionObject(_ProviderModel):
    id: Optional[str] = None
    client_reference_id: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @property
    def user_id(self) -> Optional[str]:
        return self.client_reference_id or self.metadata.user_id


class SubscriptionObject(_ProviderModel):
    id: Optional[str] = None
    customer: Optional[str] = None
    status: SubscriptionState
    current_period_end: int  # Epoch seconds
    cancel_at_period_end: bool = False
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @property
    def price_id(self) -> Optional[str]:
        for item in self.items.data:
            if item.price is not None:
                return item.price.id
        return None


class DeletedSubscriptionObject(SubscriptionObject):
    # Forced to canceled on deletion
    status: Optional[SubscriptionState] = None


class InvoiceObject(_ProviderModel):
    id: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    amount_paid: Optional[int] = None  # Cents
    amount_due: Optional[int] = None
    status: Optional[str] = None


class CheckoutData(_ProviderModel):
    object: CheckoutSessionObject


class SubscriptionData(_ProviderModel):
    object: SubscriptionObject


class DeletedSubscriptionData(_ProviderModel):
    object: DeletedSubscriptionObject


class InvoiceData(_ProviderModel):
    object: InvoiceObject


class _EventBase(_ProviderModel):
    id: Optional[str] = None
    created: int  # Epoch seconds


class CheckoutCompletedEvent(_EventBase):
    type: Literal["checkout.session.completed"]
    data: CheckoutData


class SubscriptionChangedEvent(_EventBase):
    type: Literal["customer.subscription.created", "customer.subscription.updated"]
    data: SubscriptionData


class SubscriptionDeletedEvent(_EventBase):
    type: Literal["customer.subscription.deleted"]
    data: DeletedSubscriptionData


class InvoiceEvent(_EventBase):
    type: Literal["invoice.payment_succeeded", "invoice.payment_failed"]
    data: InvoiceData


BillingEvent = Annotated[
    Union[CheckoutCompletedEvent, SubscriptionChangedEvent, SubscriptionDeletedEvent, InvoiceEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(BillingEvent)

KNOWN_EVENT_TYPES = {t.value for t in BillingEventType}


def parse_billing_event(payload: dict[str, Any]):
    """
    Validate a provider payload into its typed event.

    Returns None for event types the processor does not understand.

    Raises:
        pydantic.ValidationError: If a known event is malformed.
    """
    if payload.get("type") not in KNOWN_EVENT_TYPES:
        return None
    return _event_adapter.validate_python(payload)


# =========================================================================
# Processing
# =========================================================================

@dataclass
class WebhookResult:
    """Outcome of processing one event."""
    success: bool
    error: Optional[str] = None
    error_code: Optional[WebhookErrorCode] = None
    user_id: Optional[str] = None
    subscription: Optional[Subscription] = None


@dataclass
class WebhookLog:
    """One processed event, as kept in the webhook log."""
    id: str
    event_type: str
    status: str  # "success" or "error"
    timestamp: datetime
    data: dict = field(default_factory=dict)
    error: Optional[str] = None


SubscriptionCallback = Callable[[str, Subscription], Any]


def _from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, UTC)


_MISSING_USER_MESSAGES = {
    BillingEventType.CHECKOUT_COMPLETED.value: "No user ID in session",
    BillingEventType.SUBSCRIPTION_CREATED.value: "No user ID in subscription metadata",
    BillingEventType.SUBSCRIPTION_UPDATED.value: "No user ID in subscription metadata",
    BillingEventType.SUBSCRIPTION_DELETED.value: "No user ID in subscription metadata",
}


def _raw_user_id(payload: dict[str, Any]) -> Optional[str]:
    """Pull the target user id out of an unvalidated payload."""
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        return None
    metadata = obj.get("metadata")
    user_id = metadata.get("userId") if isinstance(metadata, dict) else None
    if payload.get("type") == BillingEventType.CHECKOUT_COMPLETED.value:
        user_id = obj.get("client_reference_id") or user_id
    return user_id if isinstance(user_id, str) and user_id else None


def _missing_user(message: str) -> WebhookResult:
    return WebhookResult(
        success=False,
        error=message,
        error_code=WebhookErrorCode.MISSING_USER_ID,
    )


class WebhookProcessor:
    """
    Routes billing events to subscription updates.

    Failures come back as ``WebhookResult(success=False, ...)``; nothing is
    raised, so a bad event never stops later ones from being processed.

    Example:
        ```python
        processor = WebhookProcessor()
        result = processor.process_event(payload, service.handle_subscription_update)
        if not result.success:
            print(result.error_code, result.error)
        ```
    """

    def __init__(self, log_size: Optional[int] = None):
        self._logs: deque[WebhookLog] = deque(maxlen=log_size or get_setting("webhook_log_size"))

    def process_event(
        self,
        payload: dict[str, Any],
        on_subscription_update: SubscriptionCallback,
        now: Optional[datetime] = None,
    ) -> WebhookResult:
        """
        Process one provider event.

        Args:
            payload: Provider-shaped event with ``id``, ``type``, ``created``
                and ``data.object``.
            on_subscription_update: Called with ``(user_id, subscription)``
                when the event changes a subscription.
            now: Timestamp for the webhook log.

        Returns:
            WebhookResult. Unknown event types succeed without an update.
        """
        event_type = str(payload.get("type"))
        logger.info("Processing webhook event: %s %s", event_type, payload.get("id"))

        # A missing target user outranks any other payload defect
        missing_message = _MISSING_USER_MESSAGES.get(event_type)
        if missing_message is not None and _raw_user_id(payload) is None:
            logger.warning("Webhook event %s has no user id", event_type)
            result = _missing_user(missing_message)
            self._record(payload, result, now)
            return result

        try:
            event = parse_billing_event(payload)
        except ValidationError as exc:
            logger.warning("Rejected malformed %s event: %s", event_type, exc.error_count())
            result = WebhookResult(
                success=False,
                error=f"Invalid {event_type} payload: {exc.errors()[0]['msg']}",
                error_code=WebhookErrorCode.INVALID_PAYLOAD,
            )
            self._record(payload, result, now)
            return result

        if event is None:
            logger.info("Unhandled webhook event type: %s", event_type)
            result = WebhookResult(success=True)
        elif isinstance(event, CheckoutCompletedEvent):
            result = self._handle_checkout_completed(event)
        elif isinstance(event, SubscriptionChangedEvent):
            result = self._handle_subscription_changed(event)
        elif isinstance(event, SubscriptionDeletedEvent):
            result = self._handle_subscription_deleted(event)
        else:
            result = self._handle_invoice(event)

        if result.success and result.subscription is not None:
            try:
                on_subscription_update(result.user_id, result.subscription)
            except Exception as exc:
                logger.exception("Subscription update callback failed for user %s", result.user_id)
                result = WebhookResult(
                    success=False,
                    error=str(exc) or exc.__class__.__name__,
                    error_code=WebhookErrorCode.CALLBACK_FAILED,
                    user_id=result.user_id,
                )

        self._record(payload, result, now)
        return result

    def _handle_checkout_completed(self, event: CheckoutCompletedEvent) -> WebhookResult:
        session = event.data.object
        user_id = session.user_id
        if not user_id:
            logger.warning("Checkout session %s has no user id", session.id)
            return _missing_user("No user ID in session")

        # Period end derives from the event, so replays give the same record
        period_end = _from_epoch(event.created) + timedelta(days=get_setting("checkout_period_days"))
        subscription = Subscription(
            id=session.subscription,
            customer_id=session.customer,
            status=SubscriptionState.ACTIVE,
            current_period_end=period_end,
            cancel_at_period_end=False,
            price_id=session.metadata.price_id or get_setting("default_price_id"),
        )
        logger.info("Checkout completed for user %s", user_id)
        return WebhookResult(success=True, user_id=user_id, subscription=subscription)

    def _handle_subscription_changed(self, event: SubscriptionChangedEvent) -> WebhookResult:
        sub = event.data.object
        user_id = sub.metadata.user_id
        if not user_id:
            logger.warning("Subscription %s has no user id in metadata", sub.id)
            return _missing_user("No user ID in subscription metadata")

        subscription = Subscription(
            id=sub.id,
            customer_id=sub.customer,
            status=sub.status,
            current_period_end=_from_epoch(sub.current_period_end),
            cancel_at_period_end=sub.cancel_at_period_end,
            price_id=sub.price_id or get_setting("default_price_id"),
        )
        logger.info("Subscription updated for user %s: %s", user_id, sub.status.value)
        return WebhookResult(success=True, user_id=user_id, subscription=subscription)

    def _handle_subscription_deleted(self, event: SubscriptionDeletedEvent) -> WebhookResult:
        sub = event.data.object
        user_id = sub.metadata.user_id
        if not user_id:
            logger.warning("Deleted subscription %s has no user id in metadata", sub.id)
            return _missing_user("No user ID in subscription metadata")

        subscription = Subscription(
            id=sub.id,
            customer_id=sub.customer,
            status=SubscriptionState.CANCELED,
            current_period_end=_from_epoch(sub.current_period_end),
            cancel_at_period_end=True,
            price_id=sub.price_id or get_setting("default_price_id"),
        )
        logger.info("Subscription deleted for user %s", user_id)
        return WebhookResult(success=True, user_id=user_id, subscription=subscription)

    def _handle_invoice(self, event: InvoiceEvent) -> WebhookResult:
        # Entitlement follows the customer.subscription.updated event that the
        # provider sends after a failed renewal, not the invoice itself.
        invoice = event.data.object
        if event.type == BillingEventType.INVOICE_PAID.value:
            logger.info(
                "Payment succeeded for subscription %s (%s cents)",
                invoice.subscription, invoice.amount_paid,
            )
        else:
            logger.warning(
                "Payment failed for subscription %s (%s cents due)",
                invoice.subscription, invoice.amount_due,
            )
        return WebhookResult(success=True)

    # -------------------------------------------------------------------------
    # Log
    # -------------------------------------------------------------------------

    def _record(self, payload: dict[str, Any], result: WebhookResult, now: Optional[datetime]) -> None:
        data = payload.get("data")
        self._logs.appendleft(
            WebhookLog(
                id=str(payload.get("id") or uuid.uuid4().hex),
                event_type=str(payload.get("type")),
                status="success" if result.success else "error",
                timestamp=resolve_now(now),
                data=(data.get("object") or {}) if isinstance(data, dict) else {},
                error=result.error,
            )
        )

    def get_webhook_logs(self) -> list[WebhookLog]:
        """Processed events, newest first."""
        return list(self._logs)

    def clear_webhook_logs(self) -> None:
        self._logs.clear()


# =========================================================================
# Simulation
# =========================================================================

def simulate_webhook(
    event_type: BillingEventType | str,
    user_id: str,
    metadata: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build a provider-shaped payload for ``event_type``.

    ``metadata`` may carry ``priceId``, ``status``, ``cancelAtPeriodEnd``,
    ``subscriptionId``, ``customerId`` and ``amount`` (cents).
    """
    event_type = BillingEventType(event_type)
    metadata = metadata or {}
    now = resolve_now(now)
    created = int(now.timestamp())
    token = uuid.uuid4().hex[:14]
    price_id = metadata.get("priceId", get_setting("default_price_id"))
    customer_id = metadata.get("customerId", f"cus_{token}")
    subscription_id = metadata.get("subscriptionId", f"sub_{token}")
    items = {"data": [{"price": {"id": price_id}}]}

    if event_type == BillingEventType.CHECKOUT_COMPLETED:
        obj = {
            "id": f"cs_{token}",
            "object": "checkout.session",
            "client_reference_id": user_id,
            "customer": customer_id,
            "subscription": subscription_id,
            "payment_status": "paid",
            "metadata": {"userId": user_id, "priceId": price_id},
        }
    elif event_type in (BillingEventType.SUBSCRIPTION_CREATED, BillingEventType.SUBSCRIPTION_UPDATED):
        obj = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": metadata.get("status", "active"),
            "current_period_end": int((now + timedelta(days=30)).timestamp()),
            "cancel_at_period_end": metadata.get("cancelAtPeriodEnd", False),
            "items": items,
            "metadata": {"userId": user_id},
        }
    elif event_type == BillingEventType.SUBSCRIPTION_DELETED:
        obj = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": "canceled",
            "current_period_end": created,
            "cancel_at_period_end": True,
            "items": items,
            "metadata": {"userId": user_id},
        }
    elif event_type == BillingEventType.INVOICE_PAID:
        obj = {
            "id": f"in_{token}",
            "object": "invoice",
            "customer": customer_id,
            "subscription": subscription_id,
            "amount_paid": metadata.get("amount", 1900),
            "status": "paid",
        }
    else:
        obj = {
            "id": f"in_{token}",
            "object": "invoice",
            "customer": customer_id,
            "subscription": subscription_id,
            "amount_due": metadata.get("amount", 1900),
            "status": "open",
        }

    return {
        "id": f"evt_{token}",
        "object": "event",
        "type": event_type.value,
        "created": created,
        "data": {"object": obj},
    }
