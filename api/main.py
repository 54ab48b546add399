"""FastAPI server for billguard."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Optional, Dict, Any, Iterator, List

from fastapi import FastAPI, HTTPException, Header, Depends, Request
from pydantic import BaseModel, Field

from billguard import (
    AlertChannel,
    AlertFrequency,
    GenerationLimitReached,
    NotFoundError,
    Period,
    SpendCategory,
    SpendingController,
    SQLiteStorage,
    SubscriptionService,
    WebhookProcessor,
    get_remaining_generations,
    should_show_upgrade_prompt,
)
from billguard.storage import StorageBackend
from billguard.subscription import get_usage_percentage


def _get_api_key() -> Optional[str]:
    return os.getenv("BILLGUARD_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def _storage() -> Iterator[StorageBackend]:
    db_path = os.getenv("BILLGUARD_DB_PATH", "billguard.db")
    storage = SQLiteStorage(db_path=db_path)
    try:
        yield storage
    finally:
        storage.close()


def _webhooks(request: Request) -> WebhookProcessor:
    return request.app.state.webhooks


app = FastAPI(title="billguard API", version="1.0.0")
app.state.webhooks = WebhookProcessor()


class LimitRequest(BaseModel):
    amount: float = Field(..., gt=0)
    period: Period = Period.MONTHLY
    block_on_exceed: bool = True


class AlertRequest(BaseModel):
    name: str = Field(..., min_length=1)
    threshold: float = Field(..., ge=0)
    percentage: Optional[float] = Field(None, ge=0, le=100)
    frequency: AlertFrequency = AlertFrequency.ONCE
    channels: List[AlertChannel] = Field(default_factory=lambda: [AlertChannel.EMAIL])
    limit_id: Optional[str] = None


class SpendCheckRequest(BaseModel):
    amount: float = Field(..., ge=0)


class TransactionRequest(BaseModel):
    amount: float = Field(..., ge=0)
    description: str = ""
    category: SpendCategory = SpendCategory.GENERATION
    enforce: bool = True


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/users/{user_id}/spending", dependencies=[Depends(_require_api_key)])
def spending_summary(user_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    return SpendingController(storage).get_summary(user_id)


@app.get("/users/{user_id}/spending/config", dependencies=[Depends(_require_api_key)])
def spending_config(user_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    return SpendingController(storage).check_and_reset(user_id).to_dict()


@app.post("/users/{user_id}/limits", dependencies=[Depends(_require_api_key)])
def add_limit(
    user_id: str,
    req: LimitRequest,
    storage: StorageBackend = Depends(_storage),
) -> Dict[str, Any]:
    limit = SpendingController(storage).add_limit(
        user_id, req.amount, req.period, block_on_exceed=req.block_on_exceed
    )
    return limit.to_dict()


@app.delete("/users/{user_id}/limits/{limit_id}", dependencies=[Depends(_require_api_key)])
def remove_limit(user_id: str, limit_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    removed = SpendingController(storage).remove_limit(user_id, limit_id)
    return {"removed": removed}


@app.post("/users/{user_id}/alerts", dependencies=[Depends(_require_api_key)])
def add_alert(
    user_id: str,
    req: AlertRequest,
    storage: StorageBackend = Depends(_storage),
) -> Dict[str, Any]:
    try:
        alert = SpendingController(storage).add_alert(
            user_id,
            req.name,
            threshold=req.threshold,
            percentage=req.percentage,
            frequency=req.frequency,
            channels=req.channels,
            limit_id=req.limit_id,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return alert.to_dict()


@app.delete("/users/{user_id}/alerts/{alert_id}", dependencies=[Depends(_require_api_key)])
def remove_alert(user_id: str, alert_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    removed = SpendingController(storage).remove_alert(user_id, alert_id)
    return {"removed": removed}


@app.post("/users/{user_id}/spend/check", dependencies=[Depends(_require_api_key)])
def check_spend(
    user_id: str,
    req: SpendCheckRequest,
    storage: StorageBackend = Depends(_storage),
) -> Dict[str, Any]:
    check = SpendingController(storage).can_spend(user_id, req.amount)
    return {"allowed": check.allowed, "reason": check.reason, "limit_id": check.limit_id}


@app.post("/users/{user_id}/transactions", dependencies=[Depends(_require_api_key)])
def record_transaction(
    user_id: str,
    req: TransactionRequest,
    storage: StorageBackend = Depends(_storage),
) -> Dict[str, Any]:
    outcome = SpendingController(storage).record_spend(
        user_id,
        req.amount,
        req.description,
        req.category,
        enforce=req.enforce,
    )
    return {
        "allowed": outcome.allowed,
        "reason": outcome.reason,
        "transaction": outcome.transaction.to_dict() if outcome.transaction else None,
        "triggered_alerts": [a.to_dict() for a in outcome.triggered_alerts],
        "total_spend_this_month": outcome.config.total_spend_this_month,
    }


@app.get("/users/{user_id}/subscription", dependencies=[Depends(_require_api_key)])
def subscription_status(user_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    service = SubscriptionService(storage)
    status = service.get_status(user_id)
    entitlement = service.get_entitlement(user_id)
    subscription = service.get_subscription(user_id)
    return {
        "status": status.to_dict(),
        "can_generate": service.can_generate(user_id),
        "remaining": get_remaining_generations(status),
        "usage_percentage": get_usage_percentage(status.generations_used, status.generations_limit),
        "show_upgrade_prompt": should_show_upgrade_prompt(status),
        "max_reference_images": entitlement.max_reference_images,
        "features": asdict(entitlement.features),
        "subscription": subscription.to_dict() if subscription else None,
    }


@app.post("/users/{user_id}/generations", dependencies=[Depends(_require_api_key)])
def consume_generation(user_id: str, storage: StorageBackend = Depends(_storage)) -> Dict[str, Any]:
    try:
        status = SubscriptionService(storage).consume_generation(user_id)
    except GenerationLimitReached as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    return {"status": status.to_dict(), "remaining": get_remaining_generations(status)}


@app.post("/webhooks/billing")
def billing_webhook(
    payload: Dict[str, Any],
    storage: StorageBackend = Depends(_storage),
    processor: WebhookProcessor = Depends(_webhooks),
) -> Dict[str, Any]:
    service = SubscriptionService(storage)
    result = processor.process_event(payload, service.handle_subscription_update)
    if not result.success:
        raise HTTPException(
            status_code=400,
            detail={"error_code": result.error_code.value, "error": result.error},
        )
    return {"received": True, "user_id": result.user_id}


@app.get("/webhooks/billing/logs", dependencies=[Depends(_require_api_key)])
def billing_webhook_logs(processor: WebhookProcessor = Depends(_webhooks)) -> List[Dict[str, Any]]:
    return [
        {
            "id": log.id,
            "event_type": log.event_type,
            "status": log.status,
            "timestamp": log.timestamp.isoformat(),
            "error": log.error,
        }
        for log in processor.get_webhook_logs()
    ]
