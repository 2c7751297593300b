from datetime import datetime, time, timedelta

import pytest

from conftest import ExplodingSink, make_customer, make_shop, make_staff
from models import db
from models.booking import Booking
from models.customer import Customer
from models.service import Service
from models.slot import Slot
from scheduling.admission import (
    cancel_booking,
    complete_service,
    confirm_booking,
    create_online_booking,
    create_walkin_booking,
    edit_price,
    list_customer_bookings,
    list_shop_bookings,
    mark_arrived,
    mark_no_show,
    start_service,
)
from scheduling.blocking import block_slot
from scheduling.errors import (
    BlockedSlotError,
    CapacityExceededError,
    IllegalTransitionError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from scheduling.generator import generate_day


def _slot(slot_id):
    db.session.expire_all()
    return db.session.get(Slot, slot_id)


def _book(shop, slot, service, customer, **kw):
    return create_online_booking(shop.tenant_id, shop.id, slot.id, service.id, customer.id, **kw)


# ---------- online ----------

def test_online_booking_takes_a_seat(shop, slots, service, customer, day, sink):
    booking = _book(shop, slots[0], service, customer, notifier=sink)

    assert booking.status == "confirmed"
    assert booking.booking_type == "online"
    assert booking.priority == "normal"
    assert booking.original_price == booking.final_price == 1000
    assert booking.scheduled_at == datetime.combine(day, time(9, 0))

    slot = _slot(slots[0].id)
    assert slot.booked_count == 1
    assert slot.status == "available"
    assert [e[0] for e in sink.events] == ["capacity_changed", "booking_changed"]


def test_last_seat_marks_slot_full(shop, slots, service, customer):
    _book(shop, slots[0], service, customer)
    _book(shop, slots[0], service, customer)

    slot = _slot(slots[0].id)
    assert slot.booked_count == slot.capacity == 2
    assert slot.status == "full"


def test_full_slot_rejects_online_booking(shop, slots, service, customer):
    _book(shop, slots[0], service, customer)
    _book(shop, slots[0], service, customer)

    with pytest.raises(CapacityExceededError):
        _book(shop, slots[0], service, customer)
    assert _slot(slots[0].id).booked_count == 2


def test_blocked_slot_rejects_online_booking(shop, slots, service, customer):
    block_slot(shop.tenant_id, shop.id, slots[0].id, actor_id="admin-1")
    with pytest.raises(BlockedSlotError):
        _book(shop, slots[0], service, customer)


def test_booking_without_auto_confirm_is_pending(tenant, customer, day):
    shop = make_shop(tenant, auto_confirm_booking=False)
    make_staff(shop, 1)
    slot = generate_day(tenant.id, shop.id, day)[0]
    svc = Service(tenant_id=tenant.id, shop_id=shop.id, name="Shave", price=500)
    db.session.add(svc)
    db.session.commit()

    booking = _book(shop, slot, svc, customer)
    assert booking.status == "pending"
    assert _slot(slot.id).booked_count == 1

    assert confirm_booking(tenant.id, shop.id, booking.id).status == "confirmed"


def test_booking_beyond_advance_window_rejected(shop, staff, service, customer):
    far = generate_day(shop.tenant_id, shop.id, datetime.now().date() + timedelta(days=10))[0]
    with pytest.raises(PolicyViolationError):
        _book(shop, far, service, customer)
    assert _slot(far.id).booked_count == 0


def test_past_slot_rejected(shop, staff, service, customer):
    past = generate_day(shop.tenant_id, shop.id, datetime.now().date() - timedelta(days=1))[0]
    with pytest.raises(ValidationError):
        _book(shop, past, service, customer)


def test_inactive_service_rejected_online(shop, slots, service, customer):
    service.is_active = False
    db.session.commit()
    with pytest.raises(NotFoundError):
        _book(shop, slots[0], service, customer)


def test_slot_of_other_tenant_not_found(shop, slots, service, other_tenant):
    stranger = make_customer(other_tenant, email="x@other.test")
    with pytest.raises(NotFoundError):
        create_online_booking(other_tenant.id, shop.id, slots[0].id, service.id, stranger.id)


def test_failing_sink_does_not_fail_booking(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer, notifier=ExplodingSink())
    assert booking.id is not None
    assert _slot(slots[0].id).booked_count == 1


# ---------- walk-in ----------

def test_walkin_creates_customer_and_high_priority_booking(shop, slots, service):
    booking = create_walkin_booking(
        shop.tenant_id, shop.id, slots[0].id, service.id,
        {"email": "Walker@Example.com", "first_name": "Walt"},
        actor_id="staff-9",
    )

    assert booking.booking_type == "walkin"
    assert booking.priority == "high"
    assert booking.status == "confirmed"
    assert booking.price_edited is False
    assert booking.customer_id is not None
    assert _slot(slots[0].id).booked_count == 1


def test_walkin_price_override_is_recorded(shop, slots, service):
    booking = create_walkin_booking(
        shop.tenant_id, shop.id, slots[0].id, service.id, {"email": "w@example.com"},
        actor_id="staff-9", price=800,
    )
    assert booking.final_price == 800
    assert booking.original_price == 1000
    assert booking.price_edited is True
    assert booking.edited_by == "staff-9"
    assert booking.edit_reason == "Walk-in pricing"


def test_walkin_requires_customer_email(shop, slots, service):
    with pytest.raises(ValidationError):
        create_walkin_booking(shop.tenant_id, shop.id, slots[0].id, service.id, {"first_name": "Anon"})


def test_walkin_overbooks_full_slot_when_allowed(shop, slots, service, customer):
    _book(shop, slots[0], service, customer)
    _book(shop, slots[0], service, customer)

    create_walkin_booking(shop.tenant_id, shop.id, slots[0].id, service.id, {"email": "w@example.com"})

    slot = _slot(slots[0].id)
    assert slot.booked_count == 3
    assert slot.capacity == 3
    assert slot.status == "full"


def test_walkin_rejected_at_full_slot_when_overbooking_disabled(tenant, customer, day):
    shop = make_shop(tenant, allow_walkin_overbooking=False)
    make_staff(shop, 1)
    slot = generate_day(tenant.id, shop.id, day)[0]
    svc = Service(tenant_id=tenant.id, shop_id=shop.id, name="Trim", price=300)
    db.session.add(svc)
    db.session.commit()
    _book(shop, slot, svc, customer)

    with pytest.raises(CapacityExceededError):
        create_walkin_booking(tenant.id, shop.id, slot.id, svc.id, {"email": "w@example.com"})
    assert _slot(slot.id).booked_count == 1


def test_rejected_walkin_leaves_no_customer_behind(tenant, customer, day):
    shop = make_shop(tenant, allow_walkin_overbooking=False)
    make_staff(shop, 1)
    slot = generate_day(tenant.id, shop.id, day)[0]
    svc = Service(tenant_id=tenant.id, shop_id=shop.id, name="Trim", price=300)
    db.session.add(svc)
    db.session.commit()
    _book(shop, slot, svc, customer)

    with pytest.raises(CapacityExceededError):
        create_walkin_booking(tenant.id, shop.id, slot.id, svc.id, {"email": "late@example.com"})

    db.session.expire_all()
    assert Customer.query.filter_by(tenant_id=tenant.id, email="late@example.com").count() == 0


def test_walkin_overflow_seat_is_given_back_on_release(shop, slots, service, customer):
    first = _book(shop, slots[0], service, customer)
    _book(shop, slots[0], service, customer)
    create_walkin_booking(shop.tenant_id, shop.id, slots[0].id, service.id, {"email": "w@example.com"})
    assert _slot(slots[0].id).capacity == 3

    cancel_booking(shop.tenant_id, shop.id, first.id, cancelled_by="1")

    slot = _slot(slots[0].id)
    assert slot.booked_count == 2
    assert slot.capacity == slot.max_capacity == 2
    assert slot.status == "full"
    with pytest.raises(CapacityExceededError):
        _book(shop, slots[0], service, customer)
    assert _slot(slots[0].id).booked_count == 2


def test_walkin_overflow_shrinks_one_seat_at_a_time(shop, slots, service, customer):
    _book(shop, slots[0], service, customer)
    _book(shop, slots[0], service, customer)
    extra = [
        create_walkin_booking(shop.tenant_id, shop.id, slots[0].id, service.id, {"email": f"w{i}@example.com"})
        for i in range(2)
    ]
    assert _slot(slots[0].id).capacity == 4

    mark_no_show(shop.tenant_id, shop.id, extra[0].id)

    slot = _slot(slots[0].id)
    assert (slot.booked_count, slot.capacity, slot.status) == (3, 3, "full")


def test_walkin_rejected_at_blocked_slot(shop, slots, service):
    block_slot(shop.tenant_id, shop.id, slots[0].id, actor_id="admin-1")
    with pytest.raises(BlockedSlotError):
        create_walkin_booking(shop.tenant_id, shop.id, slots[0].id, service.id, {"email": "w@example.com"})


# ---------- lifecycle ----------

def test_full_service_lifecycle_releases_seat(shop, staff, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)

    booking = mark_arrived(shop.tenant_id, shop.id, booking.id)
    assert booking.status == "arrived"
    assert booking.arrived_at is not None

    booking = start_service(shop.tenant_id, shop.id, booking.id, staff[0].id)
    assert booking.status == "in_progress"
    assert booking.staff_id == staff[0].id
    assert _slot(slots[0].id).booked_count == 1

    booking = complete_service(shop.tenant_id, shop.id, booking.id)
    assert booking.status == "completed"
    assert booking.completed_at is not None
    assert _slot(slots[0].id).booked_count == 0


def test_start_from_confirmed_backfills_arrival(shop, staff, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    booking = start_service(shop.tenant_id, shop.id, booking.id, staff[1].id)
    assert booking.arrived_at == booking.started_at


def test_start_with_inactive_staff_rejected(shop, staff, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    staff[0].is_active = False
    db.session.commit()

    with pytest.raises(NotFoundError):
        start_service(shop.tenant_id, shop.id, booking.id, staff[0].id)


def test_no_show_releases_seat(shop, slots, service, customer):
    _book(shop, slots[0], service, customer)
    booking = _book(shop, slots[0], service, customer)
    assert _slot(slots[0].id).status == "full"

    mark_no_show(shop.tenant_id, shop.id, booking.id)

    slot = _slot(slots[0].id)
    assert slot.booked_count == 1
    assert slot.status == "available"


def test_cancel_records_who_and_why(shop, slots, service, customer, sink):
    booking = _book(shop, slots[0], service, customer)
    sink.events.clear()

    booking = cancel_booking(
        shop.tenant_id, shop.id, booking.id, cancelled_by=customer.id, by_type="customer",
        reason="Changed plans", notifier=sink,
    )

    assert booking.status == "cancelled"
    assert booking.cancelled_by == str(customer.id)
    assert booking.cancelled_by_type == "customer"
    assert booking.cancellation_reason == "Changed plans"
    assert _slot(slots[0].id).booked_count == 0
    assert [e[0] for e in sink.events] == ["capacity_changed", "booking_changed"]


def test_cancel_with_unknown_type_rejected(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    with pytest.raises(ValidationError):
        cancel_booking(shop.tenant_id, shop.id, booking.id, cancelled_by="x", by_type="robot")


@pytest.mark.parametrize("action", ["arrive", "complete", "confirm"])
def test_illegal_transitions_from_cancelled(shop, slots, service, customer, action):
    booking = _book(shop, slots[0], service, customer)
    cancel_booking(shop.tenant_id, shop.id, booking.id, cancelled_by="admin-1", by_type="admin")

    fn = {"arrive": mark_arrived, "complete": complete_service, "confirm": confirm_booking}[action]
    with pytest.raises(IllegalTransitionError):
        fn(shop.tenant_id, shop.id, booking.id)
    assert _slot(slots[0].id).booked_count == 0


def test_complete_requires_service_started(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    with pytest.raises(IllegalTransitionError):
        complete_service(shop.tenant_id, shop.id, booking.id)
    assert db.session.get(Booking, booking.id).status == "confirmed"


def test_cancel_twice_rejected(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    cancel_booking(shop.tenant_id, shop.id, booking.id, cancelled_by="1")
    with pytest.raises(IllegalTransitionError):
        cancel_booking(shop.tenant_id, shop.id, booking.id, cancelled_by="1")


# ---------- price ----------

def test_edit_price_within_discount_cap(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    booking = edit_price(shop.tenant_id, shop.id, booking.id, 800, edited_by="staff-2", reason="Loyalty")

    assert booking.final_price == 800
    assert booking.price_edited is True
    assert booking.edited_by == "staff-2"
    assert booking.edit_reason == "Loyalty"


def test_edit_price_beyond_discount_cap_rejected(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    with pytest.raises(PolicyViolationError):
        edit_price(shop.tenant_id, shop.id, booking.id, 700, edited_by="staff-2")
    assert db.session.get(Booking, booking.id).final_price == 1000


def test_edit_price_disabled_by_shop(tenant, customer, day):
    shop = make_shop(tenant, allow_price_editing=False)
    make_staff(shop, 1)
    slot = generate_day(tenant.id, shop.id, day)[0]
    svc = Service(tenant_id=tenant.id, shop_id=shop.id, name="Color", price=2000)
    db.session.add(svc)
    db.session.commit()
    booking = _book(shop, slot, svc, customer)

    with pytest.raises(PolicyViolationError):
        edit_price(tenant.id, shop.id, booking.id, 1900, edited_by="staff-2")


def test_edit_price_negative_rejected(shop, slots, service, customer):
    booking = _book(shop, slots[0], service, customer)
    with pytest.raises(ValidationError):
        edit_price(shop.tenant_id, shop.id, booking.id, -1, edited_by="staff-2")


# ---------- listings ----------

def test_listings_filter_by_status_and_customer(shop, slots, service, customer, tenant, day):
    other = make_customer(tenant, email="other@example.com")
    kept = _book(shop, slots[0], service, customer)
    dropped = _book(shop, slots[1], service, other)
    cancel_booking(shop.tenant_id, shop.id, dropped.id, cancelled_by="1")

    confirmed = list_shop_bookings(shop.tenant_id, shop.id, status="confirmed", day=day)
    assert [b.id for b in confirmed] == [kept.id]

    assert [b.id for b in list_customer_bookings(tenant.id, other.id)] == [dropped.id]
    assert list_shop_bookings(shop.tenant_id, shop.id, day=day + timedelta(days=1)) == []
