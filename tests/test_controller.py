"""Tests for the storage-backed SpendingController."""

import pytest
from datetime import datetime, UTC, timedelta

from billguard.models import AlertFrequency
from billguard.spending_limits import NotFoundError, SpendingController
from billguard.storage import InMemoryStorage


NOW = datetime(2026, 10, 14, 15, 30, tzinfo=UTC)


class TestLimitManagement:
    """Test adding, toggling and removing limits."""

    def test_add_limit_persists(self):
        storage = InMemoryStorage()
        controller = SpendingController(storage=storage)

        limit = controller.add_limit("user_1", 100.0, "monthly", now=NOW)

        assert storage.keys() == ["spending-limits:user_1"]
        config = controller.get_config("user_1")
        assert [l.id for l in config.limits] == [limit.id]
        assert config.limits[0].reset_date == datetime(2026, 11, 1, tzinfo=UTC)

    def test_unknown_user_gets_empty_config(self):
        config = SpendingController().get_config("nobody")

        assert config.limits == []
        assert config.notifications_enabled is True

    def test_remove_limit(self):
        controller = SpendingController()
        limit = controller.add_limit("user_1", 100.0, "daily", now=NOW)

        assert controller.remove_limit("user_1", limit.id) is True
        assert controller.remove_limit("user_1", limit.id) is False
        assert controller.get_config("user_1").limits == []

    def test_disabled_limit_does_not_block(self):
        controller = SpendingController()
        limit = controller.add_limit("user_1", 10.0, "daily", now=NOW)

        controller.set_limit_enabled("user_1", limit.id, False)

        assert controller.can_spend("user_1", 50.0, now=NOW).allowed is True

    def test_set_limit_enabled_unknown_id(self):
        with pytest.raises(NotFoundError):
            SpendingController().set_limit_enabled("user_1", "limit-missing", True)


class TestAlertManagement:
    """Test alert CRUD across limits and the global list."""

    def test_add_alert_to_limit(self):
        controller = SpendingController()
        limit = controller.add_limit("user_1", 100.0, "monthly", now=NOW)

        alert = controller.add_alert("user_1", "80%", 80.0, percentage=80, limit_id=limit.id)

        config = controller.get_config("user_1")
        assert config.limits[0].alerts[0].id == alert.id
        assert config.global_alerts == []

    def test_add_global_alert(self):
        controller = SpendingController()

        alert = controller.add_alert("user_1", "Monthly $50", 50.0, frequency="weekly")

        config = controller.get_config("user_1")
        assert config.global_alerts[0].id == alert.id
        assert config.global_alerts[0].frequency == AlertFrequency.WEEKLY

    def test_add_alert_to_unknown_limit(self):
        with pytest.raises(NotFoundError):
            SpendingController().add_alert("user_1", "x", 1.0, limit_id="limit-missing")

    def test_remove_alert_anywhere(self):
        controller = SpendingController()
        limit = controller.add_limit("user_1", 100.0, "monthly", now=NOW)
        scoped = controller.add_alert("user_1", "scoped", 50.0, limit_id=limit.id)
        global_alert = controller.add_alert("user_1", "global", 50.0)

        assert controller.remove_alert("user_1", scoped.id) is True
        assert controller.remove_alert("user_1", global_alert.id) is True
        assert controller.remove_alert("user_1", global_alert.id) is False

        config = controller.get_config("user_1")
        assert config.limits[0].alerts == []
        assert config.global_alerts == []

    def test_set_alert_enabled(self):
        controller = SpendingController()
        alert = controller.add_alert("user_1", "global", 5.0)

        updated = controller.set_alert_enabled("user_1", alert.id, False)
        outcome = controller.record_spend("user_1", 10.0, "Generation", "generation", now=NOW)

        assert updated.enabled is False
        assert outcome.triggered_alerts == []

        with pytest.raises(NotFoundError):
            controller.set_alert_enabled("user_1", "alert-missing", True)


class TestRecordSpend:
    """Test spend recording through the controller."""

    def test_record_spend_updates_limits_and_ledger(self):
        controller = SpendingController()
        controller.add_limit("user_1", 100.0, "monthly", now=NOW)

        outcome = controller.record_spend("user_1", 29.99, "Pro Subscription", "subscription", now=NOW)

        assert outcome.allowed is True
        assert outcome.transaction.amount == 29.99
        config = controller.get_config("user_1")
        assert config.limits[0].current_spend == 29.99
        assert config.history[0].id == outcome.transaction.id

    def test_enforced_spend_is_blocked_without_side_effects(self):
        controller = SpendingController()
        limit = controller.add_limit("user_1", 50.0, "monthly", now=NOW)
        controller.record_spend("user_1", 40.0, "Generation pack", "generation", now=NOW)
        before = controller.get_config("user_1")

        outcome = controller.record_spend("user_1", 20.0, "Addon", "addon", enforce=True, now=NOW)

        assert outcome.allowed is False
        assert outcome.reason == "This transaction would exceed your monthly spending limit of $50.00"
        assert outcome.transaction is None
        assert controller.get_config("user_1") == before
        assert controller.can_spend("user_1", 20.0, now=NOW).limit_id == limit.id

    def test_unenforced_spend_goes_over_limit(self):
        controller = SpendingController()
        controller.add_limit("user_1", 50.0, "monthly", now=NOW)

        outcome = controller.record_spend("user_1", 80.0, "Overage", "overage", now=NOW)

        assert outcome.allowed is True
        assert outcome.config.limits[0].current_spend == 80.0

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            SpendingController().record_spend("user_1", -1.0, "Refund", "subscription", now=NOW)

    def test_expired_window_resets_before_spend(self):
        controller = SpendingController()
        controller.add_limit("user_1", 10.0, "daily", now=NOW)
        controller.record_spend("user_1", 10.0, "Generation", "generation", now=NOW)

        tomorrow = NOW + timedelta(days=1)
        assert controller.can_spend("user_1", 5.0, now=tomorrow).allowed is True

        config = controller.get_config("user_1")
        assert config.limits[0].current_spend == 0.0
        assert config.limits[0].reset_date == datetime(2026, 10, 16, tzinfo=UTC)


class TestNotifications:
    """Test alert delivery to the notifier."""

    def test_notifier_receives_fired_alerts(self):
        received = []
        controller = SpendingController(notifier=lambda alert, info: received.append(info))
        limit = controller.add_limit("user_1", 100.0, "monthly", now=NOW)
        alert = controller.add_alert("user_1", "80%", 80.0, percentage=80,
                                     channels=["email", "push"], limit_id=limit.id)

        controller.record_spend("user_1", 85.0, "Generation", "generation", now=NOW)

        assert len(received) == 1
        assert received[0]["alert_id"] == alert.id
        assert received[0]["channels"] == ["email", "push"]
        assert received[0]["trigger_count"] == 1

    def test_notifications_disabled(self):
        received = []
        controller = SpendingController(notifier=lambda alert, info: received.append(info))
        controller.add_alert("user_1", "any", 1.0)
        controller.set_notifications_enabled("user_1", False)

        outcome = controller.record_spend("user_1", 5.0, "Generation", "generation", now=NOW)

        assert len(outcome.triggered_alerts) == 1
        assert received == []

    def test_failing_notifier_does_not_break_spend(self):
        def broken(alert, info):
            raise RuntimeError("smtp down")

        controller = SpendingController(notifier=broken)
        controller.add_alert("user_1", "any", 1.0)

        outcome = controller.record_spend("user_1", 5.0, "Generation", "generation", now=NOW)

        assert outcome.allowed is True
        assert controller.get_config("user_1").total_spend_this_month == 5.0


class TestSummary:
    """Test get_summary reporting."""

    def test_summary_rows(self):
        controller = SpendingController()
        controller.add_limit("user_1", 100.0, "monthly", now=NOW)
        controller.record_spend("user_1", 85.0, "Generation", "generation", now=NOW)

        summary = controller.get_summary("user_1", now=NOW)

        row = summary["limits"][0]
        assert row["period"] == "Monthly"
        assert row["percentage"] == 85
        assert row["approaching"] is True
        assert row["exceeded"] is False
        assert row["days_remaining"] == 18
        assert summary["total_spend_this_month"] == 85.0
        assert summary["transactions"] == 1
