from datetime import UTC, datetime, timedelta

from deadswitch.services.trigger import evaluate, format_remaining, trigger_instant

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def test_active_until_duration_elapses():
    result = evaluate(T0, 60, T0 + timedelta(minutes=59, seconds=59))
    assert result.active
    assert result.overdue_by == timedelta(0)
    assert result.remaining == timedelta(seconds=1)


def test_expired_exactly_at_duration():
    result = evaluate(T0, 60, T0 + timedelta(minutes=60))
    assert result.expired
    assert result.overdue_by == timedelta(0)
    assert result.trigger_at == T0 + timedelta(minutes=60)


def test_overdue_by_grows_after_expiry():
    result = evaluate(T0, 60, T0 + timedelta(minutes=95))
    assert result.expired
    assert result.overdue_by == timedelta(minutes=35)
    assert result.remaining == timedelta(0)


def test_naive_timestamps_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    assert trigger_instant(naive, 10) == T0 + timedelta(minutes=10)
    assert evaluate(naive, 10, T0 + timedelta(minutes=10)).expired


def test_format_remaining():
    assert format_remaining(timedelta(days=3, hours=2)) == "3 day(s)"
    assert format_remaining(timedelta(hours=5)) == "5 hour(s)"
    assert format_remaining(timedelta(minutes=42)) == "42 minute(s)"
    assert format_remaining(timedelta(0)) == "0 minute(s)"
