"""
Administrative slot blocking.

Blocking touches two aggregates, the slot and every booking still holding a
seat in it, inside one transaction. The guarded flip of `is_blocked` comes
first: it fails cleanly when the slot is already blocked and takes the row's
write lock, so no admission can claim a seat while the cascade runs.
"""

import logging
from datetime import datetime

from sqlalchemy import update

from models import db
from models.booking import Booking
from models.slot import Slot
from scheduling.errors import ConflictError
from scheduling.lookups import get_slot, resolve_slot_id, trim_overflow
from scheduling.notifications import emit
from scheduling.status import CANCELLED, OCCUPYING_STATUSES, apply_status

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_REASON = "Slot blocked by admin"


def block_slot(tenant_id, shop_id, slot_id, actor_id, reason=None, notifier=None):
    """Returns (slot, cancelled_bookings)."""
    slot = get_slot(tenant_id, shop_id, slot_id)
    now = datetime.utcnow()
    actor = str(actor_id) if actor_id is not None else None

    result = db.session.execute(
        update(Slot)
        .where(Slot.id == slot.id, Slot.is_blocked.is_(False))
        .values(
            is_blocked=True,
            booked_count=0,
            blocked_by=actor,
            blocked_at=now,
            blocked_reason=reason,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise ConflictError("Slot is already blocked")

    try:
        cancelled = (
            Booking.query
            .filter(
                Booking.tenant_id == tenant_id,
                Booking.slot_id == slot.id,
                Booking.status.in_(OCCUPYING_STATUSES),
            )
            .order_by(Booking.id.asc())
            .all()
        )
        for booking in cancelled:
            booking.status = CANCELLED
            booking.cancelled_at = now
            booking.cancelled_by = actor
            booking.cancelled_by_type = "admin"
            booking.cancellation_reason = reason or DEFAULT_BLOCK_REASON

        db.session.refresh(slot)
        trim_overflow(slot)
        apply_status(slot)
        db.session.commit()
    except Exception:
        # The flip and the cascade land together or not at all
        db.session.rollback()
        raise

    logger.info(
        f"Slot {slot.id} blocked: tenant={tenant_id} shop={shop_id} "
        f"{slot.date} {slot.start_time}, cancelled {len(cancelled)} bookings"
    )
    emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    for booking in cancelled:
        emit(notifier, "booking_changed", tenant_id, shop_id, booking)
    return slot, cancelled


def unblock_slot(tenant_id, shop_id, slot_id, notifier=None):
    slot = get_slot(tenant_id, shop_id, slot_id)

    result = db.session.execute(
        update(Slot)
        .where(Slot.id == slot.id, Slot.is_blocked.is_(True))
        .values(
            is_blocked=False,
            blocked_by=None,
            blocked_at=None,
            blocked_reason=None,
            unblock_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise ConflictError("Slot is not blocked")

    db.session.refresh(slot)
    apply_status(slot)
    db.session.commit()

    logger.info(f"Slot {slot.id} unblocked: tenant={tenant_id} shop={shop_id} {slot.date} {slot.start_time}")
    emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    return slot


def block_slot_at(tenant_id, shop_id, day, start_time, actor_id, reason=None, notifier=None):
    slot_id = resolve_slot_id(tenant_id, shop_id, day, start_time)
    return block_slot(tenant_id, shop_id, slot_id, actor_id, reason=reason, notifier=notifier)


def unblock_slot_at(tenant_id, shop_id, day, start_time, notifier=None):
    slot_id = resolve_slot_id(tenant_id, shop_id, day, start_time)
    return unblock_slot(tenant_id, shop_id, slot_id, notifier=notifier)
