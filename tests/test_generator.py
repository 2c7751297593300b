from datetime import time, timedelta

import pytest

from conftest import make_shop, make_staff
from models.slot import Slot
from scheduling.errors import NoStaffError, ValidationError
from scheduling.generator import generate_day, generate_range, slot_windows
from models import db


def test_one_hour_window_gives_two_slots(slots, day):
    assert len(slots) == 2
    got = [(s.start_time, s.end_time, s.capacity, s.max_capacity, s.booked_count, s.status) for s in slots]
    assert got == [
        (time(9, 0), time(9, 30), 2, 2, 0, "available"),
        (time(9, 30), time(10, 0), 2, 2, 0, "available"),
    ]
    assert all(s.date == day for s in slots)


def test_generation_is_idempotent(shop, staff, day):
    first = generate_day(shop.tenant_id, shop.id, day)
    second = generate_day(shop.tenant_id, shop.id, day)

    assert len(first) == 2
    assert second == []
    assert Slot.query.filter_by(shop_id=shop.id, date=day).count() == 2


def test_existing_slots_are_left_untouched(shop, staff, slots, day):
    slots[0].capacity = 5
    db.session.commit()

    generate_day(shop.tenant_id, shop.id, day)
    assert db.session.get(Slot, slots[0].id).capacity == 5


def test_trailing_partial_window_is_dropped():
    windows = slot_windows(time(9, 0), time(10, 0), 45)
    assert windows == [(time(9, 0), time(9, 45))]


def test_zero_duration_rejected():
    with pytest.raises(ValidationError):
        slot_windows(time(9, 0), time(10, 0), 0)


def test_closed_day_creates_nothing(tenant, day):
    shop = make_shop(tenant)
    make_staff(shop, 1)
    shop.working_hours = {**shop.working_hours, day.strftime("%A").lower(): {"isOpen": False}}
    db.session.commit()

    assert generate_day(tenant.id, shop.id, day) == []


def test_no_active_staff_is_an_error(shop, day):
    with pytest.raises(NoStaffError):
        generate_day(shop.tenant_id, shop.id, day)
    assert Slot.query.count() == 0


def test_range_covers_every_day(shop, staff, day):
    created = generate_range(shop.tenant_id, shop.id, day, day + timedelta(days=2))
    assert len(created) == 6
    assert {s.date for s in created} == {day, day + timedelta(days=1), day + timedelta(days=2)}


def test_range_end_before_start_rejected(shop, staff, day):
    with pytest.raises(ValidationError):
        generate_range(shop.tenant_id, shop.id, day, day - timedelta(days=1))


def test_range_too_long_rejected(app, shop, staff, day):
    app.config["MAX_GENERATE_DAYS"] = 3
    with pytest.raises(ValidationError):
        generate_range(shop.tenant_id, shop.id, day, day + timedelta(days=3))
