"""
Booking admission control.

Seats are claimed with a single conditional UPDATE on the slot row
(booked_count + 1 only while the slot is unblocked and below capacity), so
two requests racing for the last seat can never both win. Everything that
follows in the same transaction runs under that row's write lock:
booked_count is recounted from the live occupying bookings and the slot
status re-derived before commit.
"""

import logging
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.customer import Customer
from models.slot import Slot
from scheduling import status as st
from scheduling.availability import require_available
from scheduling.errors import (
    BlockedSlotError,
    CapacityExceededError,
    IllegalTransitionError,
    PolicyViolationError,
    ValidationError,
)
from scheduling.lookups import get_booking, get_slot, lock_slot, recount_slot
from scheduling.notifications import emit
from scheduling.providers import (
    get_active_staff,
    get_customer,
    get_service,
    get_settings,
)

logger = logging.getLogger(__name__)


# ---------- seat claims ----------

def _increment_if_free(slot_id) -> bool:
    result = db.session.execute(
        update(Slot)
        .where(
            Slot.id == slot_id,
            Slot.is_blocked.is_(False),
            Slot.booked_count < Slot.capacity,
        )
        .values(booked_count=Slot.booked_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _increment_overbooked(slot_id) -> bool:
    # Priority admission at a full slot: grow capacity with the booking so
    # booked_count never exceeds it.
    result = db.session.execute(
        update(Slot)
        .where(
            Slot.id == slot_id,
            Slot.is_blocked.is_(False),
            Slot.booked_count >= Slot.capacity,
        )
        .values(booked_count=Slot.booked_count + 1, capacity=Slot.capacity + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim_seat(slot, overbook=False):
    """
    Atomically take one seat in `slot`, leaving the row write-locked for the
    rest of the transaction. Rolls back and raises BlockedSlotError or
    CapacityExceededError when no seat can be taken.
    """
    # The two guards are disjoint; retry only when a seat was freed or taken in between
    attempts = max(1, current_app.config.get("ADMISSION_MAX_RETRIES", 3)) if overbook else 1
    for _ in range(attempts):
        if _increment_if_free(slot.id) or (overbook and _increment_overbooked(slot.id)):
            db.session.refresh(slot)
            return slot

    db.session.rollback()
    if slot.is_blocked:
        raise BlockedSlotError()
    raise CapacityExceededError()


def _scheduled_at(slot):
    return datetime.combine(slot.date, slot.start_time)


# ---------- creation ----------

def create_online_booking(tenant_id, shop_id, slot_id, service_id, customer_id, notifier=None):
    """Customer self-service booking; subject to capacity and shop policy."""
    slot = require_available(tenant_id, slot_id, shop_id=shop_id)
    service = get_service(tenant_id, shop_id, service_id)
    customer = get_customer(tenant_id, customer_id)
    settings = get_settings(tenant_id, shop_id)

    today = date.today()
    max_advance_days = settings.booking_advance_days
    if (slot.date - today).days > max_advance_days:
        raise PolicyViolationError(f"Bookings can only be made up to {max_advance_days} days in advance")

    if _scheduled_at(slot) <= datetime.now():
        raise ValidationError("Cannot book past or started slots")

    claim_seat(slot)

    booking = Booking(
        tenant_id=tenant_id,
        shop_id=shop_id,
        slot_id=slot.id,
        customer_id=customer.id,
        service_id=service.id,
        booking_type="online",
        priority="normal",
        status=st.CONFIRMED if settings.auto_confirm_booking else st.PENDING,
        original_price=service.price,
        final_price=service.price,
        scheduled_at=_scheduled_at(slot),
    )
    db.session.add(booking)
    recount_slot(slot)
    db.session.commit()

    logger.info(f"Online booking {booking.id} created in slot {slot.id} ({slot.booked_count}/{slot.capacity})")
    emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    emit(notifier, "booking_changed", tenant_id, shop_id, booking)
    return booking


def _resolve_customer(tenant_id, customer_data):
    email = (customer_data.get("email") or "").strip().lower()
    if not email:
        raise ValidationError("Customer email is required")

    customer = Customer.query.filter_by(tenant_id=tenant_id, email=email).first()
    if customer:
        return customer

    customer = Customer(
        tenant_id=tenant_id,
        email=email,
        phone=customer_data.get("phone"),
        first_name=customer_data.get("first_name"),
        last_name=customer_data.get("last_name"),
        source="walkin",
    )
    db.session.add(customer)
    try:
        # Committed with the booking, or rolled back with a failed seat claim
        db.session.flush()
    except IntegrityError:
        # Same email registered concurrently
        db.session.rollback()
        customer = Customer.query.filter_by(tenant_id=tenant_id, email=email).first()
    return customer


def create_walkin_booking(
    tenant_id,
    shop_id,
    slot_id,
    service_id,
    customer_data,
    actor_id=None,
    staff_id=None,
    price=None,
    edit_reason=None,
    notifier=None,
):
    """
    Front-desk booking: always confirmed with high priority. A full slot
    still admits the walk-in when the shop allows walk-in overbooking.
    """
    slot = get_slot(tenant_id, shop_id, slot_id)
    if slot.is_blocked:
        raise BlockedSlotError()

    service = get_service(tenant_id, shop_id, service_id, active_only=False)
    if staff_id is not None:
        get_active_staff(tenant_id, shop_id, staff_id)

    final_price = service.price if price is None else int(price)
    if final_price < 0:
        raise ValidationError("Price cannot be negative")
    price_edited = final_price != service.price

    customer = _resolve_customer(tenant_id, customer_data or {})
    settings = get_settings(tenant_id, shop_id)

    claim_seat(slot, overbook=settings.allow_walkin_overbooking)

    booking = Booking(
        tenant_id=tenant_id,
        shop_id=shop_id,
        slot_id=slot.id,
        customer_id=customer.id,
        service_id=service.id,
        staff_id=staff_id,
        booking_type="walkin",
        priority="high",
        status=st.CONFIRMED,
        original_price=service.price,
        final_price=final_price,
        price_edited=price_edited,
        edited_by=str(actor_id) if price_edited and actor_id is not None else None,
        edit_reason=(edit_reason or "Walk-in pricing") if price_edited else None,
        scheduled_at=_scheduled_at(slot),
    )
    db.session.add(booking)
    recount_slot(slot)
    db.session.commit()

    logger.info(f"Walk-in booking {booking.id} created in slot {slot.id} ({slot.booked_count}/{slot.capacity})")
    emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    emit(notifier, "booking_changed", tenant_id, shop_id, booking)
    return booking


# ---------- transitions ----------

def _transition(tenant_id, shop_id, booking_id, allowed, action, apply, notifier, releases_seat=False):
    """
    Move a booking to its next state under the slot's write lock, so a
    concurrent block (or admission) on the same slot is serialized with it.
    """
    booking = get_booking(tenant_id, shop_id, booking_id)
    slot = lock_slot(tenant_id, shop_id, booking.slot_id)
    db.session.refresh(booking)
    if booking.status not in allowed:
        db.session.rollback()
        raise IllegalTransitionError(f"Cannot {action} a booking that is {booking.status}")

    apply(booking)
    if releases_seat:
        recount_slot(slot)
    db.session.commit()

    if releases_seat:
        emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    emit(notifier, "booking_changed", tenant_id, shop_id, booking)
    return booking


def confirm_booking(tenant_id, shop_id, booking_id, notifier=None):
    def apply(booking):
        booking.status = st.CONFIRMED

    return _transition(tenant_id, shop_id, booking_id, (st.PENDING,), "confirm", apply, notifier)


def mark_arrived(tenant_id, shop_id, booking_id, notifier=None):
    def apply(booking):
        booking.status = st.ARRIVED
        booking.arrived_at = datetime.utcnow()

    return _transition(tenant_id, shop_id, booking_id, (st.CONFIRMED,), "mark arrived", apply, notifier)


def mark_no_show(tenant_id, shop_id, booking_id, notifier=None):
    def apply(booking):
        booking.status = st.NO_SHOW

    return _transition(
        tenant_id, shop_id, booking_id, (st.CONFIRMED, st.ARRIVED), "mark no-show", apply, notifier,
        releases_seat=True,
    )


def start_service(tenant_id, shop_id, booking_id, staff_id, notifier=None):
    staff = get_active_staff(tenant_id, shop_id, staff_id)

    def apply(booking):
        now = datetime.utcnow()
        booking.status = st.IN_PROGRESS
        booking.staff_id = staff.id
        booking.started_at = now
        if not booking.arrived_at:
            booking.arrived_at = now

    return _transition(tenant_id, shop_id, booking_id, (st.CONFIRMED, st.ARRIVED), "start", apply, notifier)


def complete_service(tenant_id, shop_id, booking_id, notifier=None):
    def apply(booking):
        booking.status = st.COMPLETED
        booking.completed_at = datetime.utcnow()

    return _transition(
        tenant_id, shop_id, booking_id, (st.IN_PROGRESS,), "complete", apply, notifier,
        releases_seat=True,
    )


def cancel_booking(tenant_id, shop_id, booking_id, cancelled_by, by_type="customer", reason=None, notifier=None):
    if by_type not in st.CANCELLED_BY_TYPES:
        raise ValidationError(f"cancelled_by_type must be one of {', '.join(st.CANCELLED_BY_TYPES)}")

    def apply(booking):
        booking.status = st.CANCELLED
        booking.cancelled_at = datetime.utcnow()
        booking.cancelled_by = str(cancelled_by) if cancelled_by is not None else None
        booking.cancelled_by_type = by_type
        booking.cancellation_reason = reason

    return _transition(
        tenant_id, shop_id, booking_id, (st.PENDING, st.CONFIRMED, st.ARRIVED), "cancel", apply, notifier,
        releases_seat=True,
    )


def edit_price(tenant_id, shop_id, booking_id, new_price, edited_by, reason=None, notifier=None):
    if new_price is None or new_price < 0:
        raise ValidationError("A non-negative price is required")

    settings = get_settings(tenant_id, shop_id)
    if not settings.allow_price_editing:
        raise PolicyViolationError("Price editing is disabled for this shop")

    booking = get_booking(tenant_id, shop_id, booking_id)
    max_discount = settings.max_discount_percentage
    if max_discount is not None and booking.original_price > 0:
        discount = (booking.original_price - new_price) / booking.original_price * 100
        if discount > max_discount:
            raise PolicyViolationError(f"Discount cannot exceed {max_discount}%")

    def apply(booking):
        booking.final_price = new_price
        booking.price_edited = True
        booking.edited_by = str(edited_by) if edited_by is not None else None
        booking.edit_reason = reason

    return _transition(
        tenant_id, shop_id, booking_id, (st.CONFIRMED, st.ARRIVED, st.IN_PROGRESS), "edit the price of",
        apply, notifier,
    )


# ---------- queries ----------

def list_shop_bookings(tenant_id, shop_id, status=None, day=None, staff_id=None, limit=200):
    q = Booking.query.filter_by(tenant_id=tenant_id, shop_id=shop_id)
    if status:
        q = q.filter(Booking.status == status)
    if day:
        start = datetime(day.year, day.month, day.day)
        q = q.filter(Booking.scheduled_at >= start, Booking.scheduled_at < start + timedelta(days=1))
    if staff_id:
        q = q.filter(Booking.staff_id == staff_id)
    return q.order_by(Booking.scheduled_at.asc(), Booking.id.asc()).limit(limit).all()


def list_customer_bookings(tenant_id, customer_id, limit=200):
    return (
        Booking.query
        .filter_by(tenant_id=tenant_id, customer_id=customer_id)
        .order_by(Booking.scheduled_at.desc())
        .limit(limit)
        .all()
    )
