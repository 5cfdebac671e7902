"""Tests for round-robin staff selection and work item kinds."""

from uuid import uuid4

import pytest

from assignments import ItemType, WORK_ITEM_KINDS, kind_of, select_next

def test_starts_with_first_staff_member():
    staff = [uuid4(), uuid4(), uuid4()]
    assert select_next(staff, None) == staff[0]

def test_advances_and_wraps():
    staff = [uuid4(), uuid4(), uuid4()]
    assert select_next(staff, staff[0]) == staff[1]
    assert select_next(staff, staff[2]) == staff[0]

def test_restarts_when_last_assignee_left():
    staff = [uuid4(), uuid4()]
    assert select_next(staff, uuid4()) == staff[0]

def test_empty_staff_raises():
    with pytest.raises(ValueError):
        select_next([], None)

def test_rotation_is_fair():
    staff = [uuid4() for _ in range(4)]
    counts = dict.fromkeys(staff, 0)
    last = None
    for _ in range(10):
        last = select_next(staff, last)
        counts[last] += 1
    assert sorted(counts.values()) == [2, 2, 3, 3]

def test_every_item_type_has_a_kind():
    assert set(WORK_ITEM_KINDS) == set(ItemType)
    assert kind_of("VERIFICATION").counter_key == "verification"
    assert kind_of(ItemType.FLAGGED_MESSAGE).bind is None
