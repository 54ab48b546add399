"""Tests for the command-line interface."""

import re

from billguard.cli import main


def _db(tmp_path):
    return str(tmp_path / "billguard.db")


def test_no_command_prints_help(tmp_path, capsys):
    assert main(["--db", _db(tmp_path)]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_limit_spend_and_status(tmp_path, capsys):
    db = _db(tmp_path)

    assert main(["--db", db, "add-limit", "--user", "u1", "--amount", "50", "--period", "weekly"]) == 0
    assert main(["--db", db, "spend", "--user", "u1", "--amount", "20", "--category", "addon"]) == 0
    assert main(["--db", db, "status", "--user", "u1"]) == 0

    out = capsys.readouterr().out
    assert "Created weekly limit" in out
    assert "Recorded $20.00 (addon)" in out
    assert "$20.00 / $50.00 (40%)" in out
    assert "Tier: free" in out


def test_enforced_spend_is_blocked(tmp_path, capsys):
    db = _db(tmp_path)
    main(["--db", db, "add-limit", "--user", "u1", "--amount", "10", "--period", "daily"])

    code = main(["--db", db, "spend", "--user", "u1", "--amount", "15", "--enforce"])

    assert code == 2
    assert "Blocked: This transaction would exceed your daily spending limit of $10.00" in capsys.readouterr().out


def test_alert_fires_on_spend(tmp_path, capsys):
    db = _db(tmp_path)
    main(["--db", db, "add-limit", "--user", "u1", "--amount", "100"])
    limit_id = re.search(r"limit (limit-\w+)", capsys.readouterr().out).group(1)

    assert main(["--db", db, "add-alert", "--user", "u1", "--name", "Heads up", "--threshold", "80",
                 "--percentage", "80", "--limit-id", limit_id]) == 0
    main(["--db", db, "spend", "--user", "u1", "--amount", "90"])

    assert "ALERT: Heads up (fired 1x)" in capsys.readouterr().out


def test_add_alert_unknown_limit(tmp_path, capsys):
    code = main(["--db", _db(tmp_path), "add-alert", "--user", "u1", "--name", "x",
                 "--threshold", "1", "--limit-id", "limit-missing"])

    assert code == 1
    assert "limit-missing" in capsys.readouterr().err


def test_webhook_upgrades_then_downgrades(tmp_path, capsys):
    db = _db(tmp_path)

    assert main(["--db", db, "webhook", "checkout.session.completed", "--user", "u1"]) == 0
    assert "tier is now pro" in capsys.readouterr().out

    assert main(["--db", db, "webhook", "customer.subscription.deleted", "--user", "u1"]) == 0
    assert "tier is now free" in capsys.readouterr().out
