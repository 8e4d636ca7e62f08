import logging

from app.utils.alerting import AuditAlertTracker


def test_alert_logged_at_each_threshold_multiple(monkeypatch, caplog):
    t = {"now": 500.0}
    monkeypatch.setattr("app.utils.alerting.time.monotonic", lambda: t["now"])
    tracker = AuditAlertTracker(3600, {"PAYMENT_INITIATION_FAILED": 3})

    with caplog.at_level(logging.WARNING, logger="app.utils.alerting"):
        fired = [tracker.record("PAYMENT_INITIATION_FAILED", {"request": i}) for i in range(6)]

    assert fired == [False, False, True, False, False, True]
    alerts = [r for r in caplog.records if r.getMessage().startswith("ALERT")]
    assert len(alerts) == 2
    assert "audit_action=PAYMENT_INITIATION_FAILED count=3" in alerts[0].getMessage()


def test_unwatched_action_is_ignored():
    tracker = AuditAlertTracker(3600, {"PAYMENT_FAILED": 1})
    assert tracker.record("STATUS_CHANGE") is False


def test_occurrences_outside_window_are_forgotten(monkeypatch):
    t = {"now": 0.0}
    monkeypatch.setattr("app.utils.alerting.time.monotonic", lambda: t["now"])
    tracker = AuditAlertTracker(60, {"TRACKING_RATE_LIMITED": 2})

    assert tracker.record("TRACKING_RATE_LIMITED") is False
    t["now"] = 120.0
    assert tracker.record("TRACKING_RATE_LIMITED") is False
    assert tracker.record("TRACKING_RATE_LIMITED") is True
