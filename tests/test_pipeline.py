"""Tests for the chat moderation pipeline."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from assignments import ItemType
from auth import Principal, UserRole
from chat import ModerationPipeline
from errors import AuthorizationError, NotFoundError, ValidationError
from tests.fakes import RecordingFanout

FLAGGED_TEXT = "call me at 555-123-4567"

@pytest.fixture
def booking(fake_db, participants):
    return fake_db.add_booking(*participants)

def principal(user_id, role):
    return Principal(user_id=user_id, role=UserRole(role))

@pytest.mark.asyncio
async def test_clean_message_is_delivered(fake_db, pipeline, fanout, participants, booking):
    seeker, _ = participants

    message = await pipeline.submit_message(booking, seeker, "see you soon!")

    assert message.seq == 1
    assert not message.is_flagged
    assert message.policy_version is not None
    (booking_id, seq, event), = fanout.booking_events
    assert (booking_id, seq) == (booking, 1)
    assert event["type"] == "new_message"
    assert event["data"]["id"] == str(message.id)
    assert fake_db.alerts == {}

@pytest.mark.asyncio
async def test_flagged_message_alerts_the_monitor(fake_db, pipeline, assigner, fanout, staff, participants, booking):
    seeker, _ = participants
    monitor = await assigner.assign(booking, ItemType.BOOKING_MONITORING)

    message = await pipeline.submit_message(booking, seeker, FLAGGED_TEXT)

    assert message.is_flagged
    assert message.risk_score >= 50
    assert message.flag_reason.startswith("Automatic content filtering:")
    (alert,) = fake_db.alerts.values()
    assert alert['employee_id'] == monitor.employee_id
    assert alert['message_id'] == message.id
    assert alert['description'].startswith(f"Message flagged with risk score {message.risk_score}")
    (user_id, event), = fanout.user_events
    assert user_id == monitor.employee_id
    assert event["type"] == "monitoring_alert"

@pytest.mark.asyncio
async def test_flagged_message_assigns_missing_monitor(fake_db, pipeline, staff, participants, booking):
    await pipeline.submit_message(booking, participants[0], FLAGGED_TEXT)

    (alert,) = fake_db.alerts.values()
    assert alert['employee_id'] == staff[0]
    assert fake_db.bookings[booking]['assigned_employee_id'] == staff[0]

@pytest.mark.asyncio
async def test_flagged_message_without_staff_is_stored_unassigned(fake_db, pipeline, fanout, participants, booking):
    message = await pipeline.submit_message(booking, participants[0], FLAGGED_TEXT)

    assert message.is_flagged
    (alert,) = fake_db.alerts.values()
    assert alert['employee_id'] is None
    assert fanout.user_events == []

@pytest.mark.asyncio
async def test_history_raises_later_scores(fake_db, pipeline, participants, booking):
    seeker, _ = participants
    calm = "Looking forward to the session"

    before = await pipeline.submit_message(booking, seeker, calm)
    await pipeline.submit_message(booking, seeker, FLAGGED_TEXT)
    after = await pipeline.submit_message(booking, seeker, calm)

    assert after.risk_score > before.risk_score

@pytest.mark.asyncio
async def test_sequence_numbers_increase(fake_db, pipeline, participants, booking):
    seeker, provider = participants

    seqs = [
        (await pipeline.submit_message(booking, sender, "hello there friend")).seq
        for sender in (seeker, provider, seeker)
    ]

    assert seqs == [1, 2, 3]

@pytest.mark.asyncio
async def test_rejected_messages(fake_db, pipeline, participants, booking, monkeypatch):
    seeker, provider = participants
    outsider = fake_db.add_user('SEEKER')

    with pytest.raises(ValidationError):
        await pipeline.submit_message(booking, outsider, "hello there friend")
    with pytest.raises(ValidationError):
        await pipeline.submit_message(booking, seeker, "   ")
    with pytest.raises(ValidationError):
        await pipeline.submit_message(booking, seeker, "x" * 2001)
    with pytest.raises(NotFoundError):
        await pipeline.submit_message(uuid4(), seeker, "hello there friend")

    fake_db.bookings[booking]['status'] = 'CANCELLED'
    with pytest.raises(ValidationError):
        await pipeline.submit_message(booking, provider, "hello there friend")
    assert fake_db.messages == {}

@pytest.mark.asyncio
async def test_media_only_message(fake_db, pipeline, participants, booking):
    message = await pipeline.submit_message(booking, participants[0], None, "https://cdn.example.com/a.png")

    assert message.content == ""
    assert message.media_url == "https://cdn.example.com/a.png"

@pytest.mark.asyncio
async def test_fanout_failure_keeps_message(fake_db, assigner, alerts, participants, booking):
    pipeline = ModerationPipeline(RecordingFanout(fail=True), assigner, alerts, fake_db.pool)

    message = await pipeline.submit_message(booking, participants[0], "hello there friend")

    assert message.id in fake_db.messages

@pytest.mark.asyncio
async def test_mark_read(fake_db, pipeline, fanout, participants, booking):
    seeker, provider = participants
    first = await pipeline.submit_message(booking, seeker, "hello there friend")
    await pipeline.submit_message(booking, provider, "hi, see you then")

    updated = await pipeline.mark_read(booking, provider)

    assert updated == [first.id]
    assert fake_db.messages[first.id]['is_read']
    assert fanout.events_of_type("messages_read")[0]["data"]["reader_id"] == str(provider)
    assert await pipeline.mark_read(booking, provider) == []

@pytest.mark.asyncio
async def test_staff_flag_message(fake_db, pipeline, fanout, staff, participants, booking):
    message = await pipeline.submit_message(booking, participants[0], "hello there friend")
    employee = principal(staff[0], 'EMPLOYEE')

    flagged = await pipeline.flag_message(message.id, employee, "off-platform payment")

    assert flagged.is_flagged
    assert flagged.flag_reason == "Manual review: off-platform payment"
    assert fake_db.audit_logs[-1]['action'] == 'MESSAGE_FLAGGED'
    assert fanout.events_of_type("message_flagged")

    with pytest.raises(AuthorizationError):
        await pipeline.flag_message(message.id, principal(participants[1], 'PROVIDER'), "spam")
    with pytest.raises(ValidationError):
        await pipeline.flag_message(message.id, employee, " ")
    with pytest.raises(NotFoundError):
        await pipeline.flag_message(uuid4(), employee, "spam")

@pytest.mark.asyncio
async def test_system_message(fake_db, pipeline, assigner, staff, participants, booking):
    monitor = await assigner.assign(booking, ItemType.BOOKING_MONITORING)
    await pipeline.submit_message(booking, participants[0], "hello there friend")

    message = await pipeline.send_system_message(
        booking, principal(monitor.employee_id, 'EMPLOYEE'), "Please keep payments on the platform"
    )

    assert message.is_system_message
    assert message.seq == 2
    assert message.risk_score == 0

    with pytest.raises(AuthorizationError):
        await pipeline.send_system_message(booking, principal(staff[1], 'EMPLOYEE'), "hello")
    with pytest.raises(AuthorizationError):
        await pipeline.send_system_message(booking, principal(participants[0], 'SEEKER'), "hello")

@pytest.mark.asyncio
async def test_message_history_access(fake_db, pipeline, assigner, staff, participants, booking):
    for text in ("one message here", "two message here", "three message here"):
        await pipeline.submit_message(booking, participants[0], text)

    history = await pipeline.get_messages(booking, principal(participants[1], 'PROVIDER'))
    assert [m.seq for m in history] == [1, 2, 3]

    older = await pipeline.get_messages(booking, principal(participants[1], 'PROVIDER'), before_seq=3, limit=1)
    assert [m.seq for m in older] == [2]

    manager = principal(fake_db.add_user('MANAGER'), 'MANAGER')
    assert len(await pipeline.get_messages(booking, manager)) == 3

    with pytest.raises(AuthorizationError):
        await pipeline.get_messages(booking, principal(staff[0], 'EMPLOYEE'))

@pytest.mark.asyncio
async def test_statistics(fake_db, pipeline, participants, booking):
    await pipeline.submit_message(booking, participants[0], "hello there friend")
    await pipeline.submit_message(booking, participants[0], FLAGGED_TEXT)
    for row in fake_db.messages.values():
        row['created_at'] = datetime.now(timezone.utc)

    stats = await pipeline.get_statistics("1h")

    assert (stats.total_messages, stats.flagged_messages) == (2, 1)
    assert stats.flagged_percentage == 50.0

    with pytest.raises(ValidationError):
        await pipeline.get_statistics("2w")

@pytest.mark.asyncio
async def test_flagged_message_after_completion_keeps_workload_closed(
    fake_db, pipeline, assigner, ledger, staff, participants
):
    seeker, provider = participants
    booking = await ledger.create_booking(seeker, provider, datetime(2024, 6, 1, 10, tzinfo=timezone.utc), 2, 100)
    monitor = await assigner.assign(booking.id, ItemType.BOOKING_MONITORING)
    for status in ('CONFIRMED', 'IN_PROGRESS', 'COMPLETED'):
        await ledger.transition(booking.id, status)
    counter = fake_db.counters['booking_monitoring']

    message = await pipeline.submit_message(booking.id, seeker, FLAGGED_TEXT)

    assert message.is_flagged
    assert fake_db.active_assignments(booking.id) == []
    assert fake_db.counters['booking_monitoring'] == counter
    (alert,) = fake_db.alerts.values()
    assert alert['employee_id'] == monitor.employee_id
    workload = await assigner.workload_of(monitor.employee_id)
    assert workload.total == 0
