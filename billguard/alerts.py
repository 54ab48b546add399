"""
Alert evaluation.

Decides whether a spending alert should fire given the current spend,
honouring each alert's frequency throttle.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from billguard.models import AlertChannel, AlertFrequency, SpendingAlert, new_id
from billguard.periods import resolve_now


THROTTLE_WINDOWS = {
    AlertFrequency.DAILY: timedelta(days=1),
    AlertFrequency.WEEKLY: timedelta(days=7),
}


def get_spending_percentage(current_spend: float, limit: float) -> int:
    """Spend as a whole percentage of ``limit``, capped at 100. Zero cap gives 0."""
    if limit == 0:
        return 0
    # Half rounds up
    return min(100, math.floor(current_spend / limit * 100 + 0.5))


def create_spending_alert(
    name: str,
    threshold: float,
    percentage: Optional[float] = None,
    frequency: AlertFrequency | str = AlertFrequency.ONCE,
    channels: Optional[Iterable[AlertChannel | str]] = None,
) -> SpendingAlert:
    """
    Create an enabled alert that has never fired.

    Args:
        name: Label shown to the user.
        threshold: Absolute spend that trips the alert.
        percentage: Percent of the owning limit's cap that trips the alert.
            Only used when the alert is evaluated against a limit.
        frequency: Throttle class.
        channels: Delivery channels. Defaults to email.
    """
    return SpendingAlert(
        id=new_id("alert"),
        name=name,
        threshold=threshold,
        percentage=percentage,
        frequency=AlertFrequency(frequency),
        channels=[AlertChannel(c) for c in (channels or [AlertChannel.EMAIL])],
    )


def threshold_met(
    alert: SpendingAlert,
    current_spend: float,
    limit_amount: Optional[float] = None,
) -> bool:
    if alert.percentage is not None and limit_amount is not None:
        return get_spending_percentage(current_spend, limit_amount) >= alert.percentage
    return current_spend >= alert.threshold


def should_trigger_alert(
    alert: SpendingAlert,
    current_spend: float,
    limit_amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide whether ``alert`` fires for ``current_spend``.

    Pure: the caller applies ``mark_triggered`` when this returns True.

    Args:
        alert: The alert to evaluate.
        current_spend: Limit spend, or the running monthly total for
            global alerts.
        limit_amount: Cap of the owning limit, if any.
        now: Evaluation instant.

    Returns:
        True when the threshold is met and the frequency throttle allows it.
    """
    if not alert.enabled:
        return False

    if not threshold_met(alert, current_spend, limit_amount):
        return False

    if alert.last_triggered is None:
        return True

    if alert.frequency == AlertFrequency.ALWAYS:
        return True

    window = THROTTLE_WINDOWS.get(alert.frequency)
    if window is None:
        # ONCE
        return False

    now = resolve_now(now)
    return now - alert.last_triggered >= window


def mark_triggered(alert: SpendingAlert, now: Optional[datetime] = None) -> SpendingAlert:
    """Return a copy of ``alert`` recording one more firing at ``now``."""
    return replace(
        alert,
        last_triggered=resolve_now(now),
        trigger_count=alert.trigger_count + 1,
    )


def clear_trigger_state(alert: SpendingAlert) -> SpendingAlert:
    """Restart the alert's throttle clock."""
    return replace(alert, last_triggered=None, trigger_count=0)


def evaluate_alerts(
    alerts: list[SpendingAlert],
    current_spend: float,
    limit_amount: Optional[float],
    now: datetime,
    fired: list[SpendingAlert],
) -> list[SpendingAlert]:
    """
    Evaluate ``alerts`` once, returning the updated list.

    Alerts that fire are marked and appended to ``fired``.
    """
    updated = []
    for alert in alerts:
        if should_trigger_alert(alert, current_spend, limit_amount, now=now):
            alert = mark_triggered(alert, now)
            fired.append(alert)
        updated.append(alert)
    return updated
