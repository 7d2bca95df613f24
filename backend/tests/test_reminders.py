from datetime import timedelta

import pytest
from sqlmodel import select

from deadswitch.core.errors import InvalidInputError
from deadswitch.models.reminder import Reminder
from deadswitch.services import repository
from deadswitch.services.reminders import (
    claim_reminder,
    due_reminders,
    rearm,
    reminder_due_at,
    validate_offsets,
)


def test_reminder_due_at_fifty_minutes_not_at_forty_nine(make_switch, t0):
    message = make_switch(duration=60, reminders=[10]).message

    assert due_reminders(message, t0 + timedelta(minutes=49)) == []
    due = due_reminders(message, t0 + timedelta(minutes=50))
    assert [r.minutes_before for r in due] == [10]
    assert reminder_due_at(message, due[0]) == t0 + timedelta(minutes=50)


def test_overdue_reminders_are_all_reported(make_switch, t0):
    message = make_switch(duration=60, reminders=[30, 10]).message

    due = due_reminders(message, t0 + timedelta(minutes=55))
    assert sorted(r.minutes_before for r in due) == [10, 30]


def test_claim_is_exactly_once(session, make_switch, t0):
    message = make_switch(duration=60, reminders=[10]).message
    reminder = message.reminders[0]

    assert claim_reminder(session, message, reminder)
    assert not claim_reminder(session, message, reminder)
    assert due_reminders(message, t0 + timedelta(minutes=55)) == []


def test_check_in_rearms_reminders_and_moves_trigger(session, make_switch, t0, fresh):
    created = make_switch(duration=60, reminders=[10])
    message = created.message
    claim_reminder(session, message, message.reminders[0])

    assert rearm(session, message.id)

    refreshed = fresh(type(message), message.id)
    assert refreshed.revision == message.revision + 1
    assert refreshed.last_seen.replace(tzinfo=None) > t0.replace(tzinfo=None)
    sent = session.exec(select(Reminder.sent).where(Reminder.message_id == message.id)).all()
    assert sent == [False]


def test_claim_fails_after_concurrent_check_in(session, make_switch):
    message = make_switch(duration=60, reminders=[10]).message
    stale_revision = message.revision

    repository.record_check_in(session, message.id)

    reminder = message.reminders[0]
    assert not repository.claim_reminder(session, reminder.id, message.id, stale_revision)


def test_check_in_refused_once_triggered(session, make_switch):
    message = make_switch(duration=60).message
    assert repository.claim_trigger(session, message.id, message.revision)
    assert not repository.record_check_in(session, message.id)


@pytest.mark.parametrize(
    "offsets, message",
    [
        ([-1], "negative"),
        ([10, 10], "unique"),
        ([60], "shorter"),
        (list(range(11)), "At most"),
    ],
)
def test_validate_offsets_rejects(offsets, message):
    with pytest.raises(InvalidInputError, match=message):
        validate_offsets(offsets, 60)


def test_validate_offsets_sorts_descending():
    assert validate_offsets([5, 30, 0], 60) == [30, 5, 0]
