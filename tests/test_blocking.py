from datetime import time

import pytest
from sqlalchemy.orm import Session

from conftest import make_customer, make_shop, make_staff
from models import db
from models.booking import Booking
from models.service import Service
from models.slot import Slot
from scheduling.admission import (
    cancel_booking,
    confirm_booking,
    create_online_booking,
    mark_arrived,
    start_service,
)
from scheduling.availability import is_available
from scheduling.blocking import DEFAULT_BLOCK_REASON, block_slot, block_slot_at, unblock_slot, unblock_slot_at
from scheduling.errors import ConflictError, NotFoundError
from scheduling.generator import generate_day


def _fill(shop, slot, service, tenant):
    return [
        create_online_booking(shop.tenant_id, shop.id, slot.id, service.id, make_customer(tenant, email=e).id)
        for e in ("a@example.com", "b@example.com")
    ]


def test_block_full_slot_cancels_every_booking(tenant, shop, slots, service, sink):
    booked = _fill(shop, slots[0], service, tenant)
    sink.events.clear()

    slot, cancelled = block_slot(
        tenant.id, shop.id, slots[0].id, actor_id="admin-1", reason="maintenance", notifier=sink
    )

    assert slot.is_blocked is True
    assert slot.status == "blocked"
    assert slot.booked_count == 0
    assert slot.blocked_by == "admin-1"
    assert slot.blocked_reason == "maintenance"
    assert slot.blocked_at is not None

    assert sorted(b.id for b in cancelled) == sorted(b.id for b in booked)
    for b in cancelled:
        assert b.status == "cancelled"
        assert b.cancelled_by_type == "admin"
        assert b.cancelled_by == "admin-1"
        assert b.cancellation_reason == "maintenance"

    assert sink.of("capacity_changed") == [("capacity_changed", tenant.id, shop.id, slot.date)]
    assert len(sink.of("booking_changed")) == 2


def test_block_skips_finished_bookings(tenant, shop, slots, service):
    first, second = _fill(shop, slots[0], service, tenant)
    cancel_booking(tenant.id, shop.id, first.id, cancelled_by="1", reason="sick")

    _, cancelled = block_slot(tenant.id, shop.id, slots[0].id, actor_id="admin-1")

    assert [b.id for b in cancelled] == [second.id]
    assert db.session.get(Booking, first.id).cancellation_reason == "sick"
    assert db.session.get(Booking, second.id).cancellation_reason == DEFAULT_BLOCK_REASON


def test_double_block_conflicts(shop, slots):
    block_slot(shop.tenant_id, shop.id, slots[0].id, actor_id="admin-1")
    with pytest.raises(ConflictError):
        block_slot(shop.tenant_id, shop.id, slots[0].id, actor_id="admin-2")

    db.session.expire_all()
    assert db.session.get(Slot, slots[0].id).blocked_by == "admin-1"


def test_unblock_makes_slot_available_again(shop, slots, sink):
    block_slot(shop.tenant_id, shop.id, slots[0].id, actor_id="admin-1", reason="maintenance")

    slot = unblock_slot(shop.tenant_id, shop.id, slots[0].id, notifier=sink)

    assert slot.is_blocked is False
    assert slot.status == "available"
    assert slot.booked_count == 0
    assert slot.blocked_by is None
    assert slot.blocked_reason is None
    assert slot.unblock_at is not None
    assert is_available(shop.tenant_id, slot.id)
    assert len(sink.of("capacity_changed")) == 1


def test_unblock_of_open_slot_conflicts(shop, slots):
    with pytest.raises(ConflictError):
        unblock_slot(shop.tenant_id, shop.id, slots[0].id)


def test_block_by_date_and_time(shop, slots, day):
    slot, cancelled = block_slot_at(shop.tenant_id, shop.id, day, time(9, 30), actor_id="admin-1")
    assert slot.id == slots[1].id
    assert cancelled == []

    slot = unblock_slot_at(shop.tenant_id, shop.id, day, time(9, 30))
    assert slot.status == "available"


def test_block_unknown_time_not_found(shop, slots, day):
    with pytest.raises(NotFoundError):
        block_slot_at(shop.tenant_id, shop.id, day, time(11, 0), actor_id="admin-1")


def test_block_other_tenants_slot_not_found(shop, slots, other_tenant):
    with pytest.raises(NotFoundError):
        block_slot(other_tenant.id, shop.id, slots[0].id, actor_id="admin-1")


def test_block_cancels_pending_arrived_and_in_progress(tenant, day):
    shop = make_shop(tenant, auto_confirm_booking=False)
    team = make_staff(shop, 4)
    slot = generate_day(tenant.id, shop.id, day)[0]
    svc = Service(tenant_id=tenant.id, shop_id=shop.id, name="Colour", price=2500)
    db.session.add(svc)
    db.session.commit()

    pending, arrived, in_progress, confirmed = [
        create_online_booking(tenant.id, shop.id, slot.id, svc.id, make_customer(tenant, email=f"c{i}@example.com").id)
        for i in range(4)
    ]
    for b in (arrived, in_progress, confirmed):
        confirm_booking(tenant.id, shop.id, b.id)
    mark_arrived(tenant.id, shop.id, arrived.id)
    start_service(tenant.id, shop.id, in_progress.id, team[0].id)

    _, cancelled = block_slot(tenant.id, shop.id, slot.id, actor_id="admin-1")

    assert sorted(b.id for b in cancelled) == sorted(b.id for b in (pending, arrived, in_progress, confirmed))
    db.session.expire_all()
    for b in (pending, arrived, in_progress, confirmed):
        row = db.session.get(Booking, b.id)
        assert row.status == "cancelled"
        assert row.cancelled_by_type == "admin"
    assert db.session.get(Slot, slot.id).booked_count == 0


def test_failed_cascade_leaves_slot_and_bookings_untouched(monkeypatch, tenant, shop, slots, service):
    booked = _fill(shop, slots[0], service, tenant)
    real_flush = Session.flush

    def flush_failing_on_bookings(self, *args, **kwargs):
        if any(isinstance(o, Booking) for o in self.dirty):
            raise RuntimeError("disk full")
        return real_flush(self, *args, **kwargs)

    monkeypatch.setattr(Session, "flush", flush_failing_on_bookings)
    with pytest.raises(RuntimeError):
        block_slot(tenant.id, shop.id, slots[0].id, actor_id="admin-1")
    monkeypatch.undo()

    db.session.expire_all()
    slot = db.session.get(Slot, slots[0].id)
    assert slot.is_blocked is False
    assert slot.blocked_by is None
    assert slot.booked_count == 2
    assert slot.status == "full"
    assert {db.session.get(Booking, b.id).status for b in booked} == {"confirmed"}

    # The slot can still be blocked once the store recovers
    _, cancelled = block_slot(tenant.id, shop.id, slots[0].id, actor_id="admin-1")
    assert len(cancelled) == 2
