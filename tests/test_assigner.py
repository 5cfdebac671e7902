"""Tests for the escalation assigner against the in-memory database."""

import asyncio
from uuid import uuid4

import pytest

from assignments import ItemType
from auth import Principal, UserRole
from errors import AuthorizationError, NoEligibleStaffError, NotFoundError, ValidationError

@pytest.mark.asyncio
async def test_verifications_rotate_over_staff(fake_db, assigner, staff):
    seeker = fake_db.add_user('SEEKER')
    verifications = [fake_db.add_verification(seeker) for _ in range(6)]

    results = [await assigner.assign(v, ItemType.VERIFICATION) for v in verifications]

    assert [a.employee_id for a in results] == staff + staff
    for verification_id, assignment in zip(verifications, results):
        row = fake_db.verifications[verification_id]
        assert row['employee_id'] == assignment.employee_id
        assert row['status'] == 'IN_PROGRESS'

@pytest.mark.asyncio
async def test_assign_is_idempotent(fake_db, assigner, staff):
    verification = fake_db.add_verification(fake_db.add_user('SEEKER'))

    first = await assigner.assign(verification, ItemType.VERIFICATION)
    second = await assigner.assign(verification, ItemType.VERIFICATION)

    assert first.id == second.id
    assert len(fake_db.active_assignments(verification)) == 1
    assert fake_db.counters['verification'] == staff[0]

@pytest.mark.asyncio
async def test_counters_are_per_type(fake_db, assigner, staff, participants):
    verification = fake_db.add_verification(participants[0])
    booking = fake_db.add_booking(*participants)

    await assigner.assign(verification, ItemType.VERIFICATION)
    monitor = await assigner.assign(booking, ItemType.BOOKING_MONITORING)

    assert monitor.employee_id == staff[0]
    assert fake_db.bookings[booking]['assigned_employee_id'] == staff[0]

@pytest.mark.asyncio
async def test_no_staff_writes_nothing(fake_db, assigner):
    fake_db.add_user('EMPLOYEE', is_active=False)
    fake_db.add_user('EMPLOYEE', is_verified=False)
    verification = fake_db.add_verification(fake_db.add_user('SEEKER'))

    with pytest.raises(NoEligibleStaffError) as excinfo:
        await assigner.assign(verification, ItemType.VERIFICATION)

    assert excinfo.value.details == {'item_type': 'VERIFICATION'}
    assert fake_db.assignments == {}
    assert fake_db.verifications[verification]['employee_id'] is None

@pytest.mark.asyncio
async def test_missing_item(fake_db, assigner, staff):
    with pytest.raises(NotFoundError):
        await assigner.assign(uuid4(), ItemType.FLAGGED_MESSAGE)

@pytest.mark.asyncio
async def test_departed_assignee_restarts_rotation(fake_db, assigner, staff):
    seeker = fake_db.add_user('SEEKER')
    first = await assigner.assign(fake_db.add_verification(seeker), ItemType.VERIFICATION)
    fake_db.users[first.employee_id]['is_active'] = False

    second = await assigner.assign(fake_db.add_verification(seeker), ItemType.VERIFICATION)

    assert second.employee_id == staff[1]

@pytest.mark.asyncio
async def test_concurrent_assignments_of_one_item(fake_db, assigner, staff):
    verification = fake_db.add_verification(fake_db.add_user('SEEKER'))

    results = await asyncio.gather(*(
        assigner.assign(verification, ItemType.VERIFICATION) for _ in range(5)
    ))

    assert len({a.id for a in results}) == 1
    assert len(fake_db.active_assignments(verification)) == 1

@pytest.mark.asyncio
async def test_concurrent_assignments_stay_fair(fake_db, assigner, staff):
    seeker = fake_db.add_user('SEEKER')
    verifications = [fake_db.add_verification(seeker) for _ in range(9)]

    results = await asyncio.gather(*(
        assigner.assign(v, ItemType.VERIFICATION) for v in verifications
    ))

    counts = {employee: 0 for employee in staff}
    for assignment in results:
        counts[assignment.employee_id] += 1
    assert list(counts.values()) == [3, 3, 3]

@pytest.mark.asyncio
async def test_reassign_moves_the_work(fake_db, assigner, staff):
    verification = fake_db.add_verification(fake_db.add_user('SEEKER'))
    original = await assigner.assign(verification, ItemType.VERIFICATION)
    supervisor = Principal(user_id=fake_db.add_user('MANAGER'), role=UserRole.MANAGER)

    moved = await assigner.reassign(original.id, staff[2], supervisor)

    assert moved.employee_id == staff[2]
    old_row = fake_db.assignments[original.id]
    assert not old_row['is_active'] and old_row['completed_at'] is None
    assert fake_db.active_assignments(verification)[0]['id'] == moved.id
    assert fake_db.verifications[verification]['employee_id'] == staff[2]

    audit_row = fake_db.audit_logs[-1]
    assert audit_row['action'] == 'ASSIGNMENT_REASSIGNED'
    assert audit_row['actor_id'] == supervisor.user_id
    assert audit_row['details']['previous_employee_id'] == str(staff[0])

@pytest.mark.asyncio
async def test_reassign_to_same_employee_is_a_no_op(fake_db, assigner, staff):
    original = await assigner.assign(
        fake_db.add_verification(fake_db.add_user('SEEKER')), ItemType.VERIFICATION
    )

    same = await assigner.reassign(original.id, staff[0])

    assert same.id == original.id
    assert fake_db.audit_logs == []

@pytest.mark.asyncio
async def test_reassign_rejects_ineligible_target(fake_db, assigner, staff):
    original = await assigner.assign(
        fake_db.add_verification(fake_db.add_user('SEEKER')), ItemType.VERIFICATION
    )
    seeker = fake_db.add_user('SEEKER')

    with pytest.raises(ValidationError):
        await assigner.reassign(original.id, seeker)
    assert fake_db.assignments[original.id]['is_active']

@pytest.mark.asyncio
async def test_reassign_closed_assignment(fake_db, assigner, staff):
    original = await assigner.assign(
        fake_db.add_verification(fake_db.add_user('SEEKER')), ItemType.VERIFICATION
    )
    await assigner.complete(original.id)

    with pytest.raises(ValidationError):
        await assigner.reassign(original.id, staff[1])

@pytest.mark.asyncio
async def test_complete_twice(fake_db, assigner, staff):
    original = await assigner.assign(
        fake_db.add_verification(fake_db.add_user('SEEKER')), ItemType.VERIFICATION
    )

    done = await assigner.complete(original.id)
    assert not done.is_active and done.completed_at is not None

    with pytest.raises(ValidationError):
        await assigner.complete(original.id)

@pytest.mark.asyncio
async def test_workloads_and_queue(fake_db, assigner, staff, participants):
    verifications = [fake_db.add_verification(participants[0]) for _ in range(4)]
    for verification in verifications:
        await assigner.assign(verification, ItemType.VERIFICATION)
    booking = fake_db.add_booking(*participants)
    await assigner.assign(booking, ItemType.BOOKING_MONITORING)

    first = await assigner.workload_of(staff[0])
    assert first.total == 3
    assert first.by_type == {ItemType.VERIFICATION: 2, ItemType.BOOKING_MONITORING: 1}

    everyone = {w.employee_id: w.total for w in await assigner.all_workloads()}
    assert everyone == {staff[0]: 3, staff[1]: 1, staff[2]: 1}

    queue = await assigner.queue_of(staff[0])
    assert [a.item_id for a in queue] == [verifications[0], verifications[3], booking]

@pytest.mark.asyncio
async def test_assign_unmonitored_bookings(fake_db, assigner, staff, participants):
    open_bookings = [fake_db.add_booking(*participants) for _ in range(2)]
    fake_db.add_booking(*participants, status='COMPLETED')

    assert await assigner.assign_unmonitored_bookings() == 2
    assert await assigner.assign_unmonitored_bookings() == 0
    for booking in open_bookings:
        assert fake_db.bookings[booking]['assigned_employee_id'] is not None

@pytest.mark.asyncio
async def test_concurrent_reassignments_leave_one_active(fake_db, assigner, staff):
    verification = fake_db.add_verification(fake_db.add_user('SEEKER'))
    original = await assigner.assign(verification, ItemType.VERIFICATION)

    results = await asyncio.gather(
        assigner.reassign(original.id, staff[1]),
        assigner.reassign(original.id, staff[2]),
        return_exceptions=True
    )

    moved = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(moved) == 1
    assert len(rejected) == 1 and isinstance(rejected[0], ValidationError)
    (active,) = fake_db.active_assignments(verification)
    assert active['id'] == moved[0].id
    assert fake_db.verifications[verification]['employee_id'] == moved[0].employee_id

@pytest.mark.asyncio
async def test_only_assignee_or_supervisor_completes(fake_db, assigner, staff):
    seeker = fake_db.add_user('SEEKER')
    first = await assigner.assign(fake_db.add_verification(seeker), ItemType.VERIFICATION)
    second = await assigner.assign(fake_db.add_verification(seeker), ItemType.VERIFICATION)
    colleague = Principal(user_id=staff[2], role=UserRole.EMPLOYEE)

    with pytest.raises(AuthorizationError):
        await assigner.complete(first.id, colleague)
    assert fake_db.assignments[first.id]['is_active']

    assignee = Principal(user_id=first.employee_id, role=UserRole.EMPLOYEE)
    assert not (await assigner.complete(first.id, assignee)).is_active

    manager = Principal(user_id=fake_db.add_user('MANAGER'), role=UserRole.MANAGER)
    assert not (await assigner.complete(second.id, manager)).is_active

@pytest.mark.asyncio
async def test_finished_booking_is_not_assigned_a_monitor(fake_db, assigner, staff, participants):
    booking = fake_db.add_booking(*participants, status='COMPLETED')

    with pytest.raises(NotFoundError):
        await assigner.assign(booking, ItemType.BOOKING_MONITORING)

    assert fake_db.active_assignments(booking) == []
    assert fake_db.counters.get('booking_monitoring') is None
