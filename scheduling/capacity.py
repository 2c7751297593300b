import logging
from datetime import date

from sqlalchemy import case, update

from models import db
from models.slot import Slot
from scheduling.errors import ConflictError, ValidationError
from scheduling.lookups import get_slot
from scheduling.notifications import emit
from scheduling.providers import get_shop, count_active_staff
from scheduling.status import apply_status

logger = logging.getLogger(__name__)


def _snapshot(slots):
    return {s.id: (s.capacity, s.max_capacity, s.status) for s in slots}


def _unblocked_slots(tenant_id, shop_id, day):
    return (
        Slot.query
        .filter_by(tenant_id=tenant_id, shop_id=shop_id, date=day, is_blocked=False)
        .order_by(Slot.start_time.asc())
    )


def sync_capacity(tenant_id, shop_id, day, notifier=None):
    """
    Resize every unblocked slot of `day` to the active staff count, never
    below the bookings it already holds. Blocked slots are not touched.
    """
    get_shop(tenant_id, shop_id)
    active_staff = count_active_staff(tenant_id, shop_id)

    before = _snapshot(_unblocked_slots(tenant_id, shop_id, day).all())
    if not before:
        return []

    # Capacity floor is applied by the store against the row's current booked_count
    db.session.execute(
        update(Slot)
        .where(
            Slot.tenant_id == tenant_id,
            Slot.shop_id == shop_id,
            Slot.date == day,
            Slot.is_blocked.is_(False),
        )
        .values(
            max_capacity=active_staff,
            capacity=case(
                (Slot.booked_count > active_staff, Slot.booked_count),
                else_=active_staff,
            ),
        )
        .execution_options(synchronize_session=False)
    )

    slots = _unblocked_slots(tenant_id, shop_id, day).populate_existing().all()
    for slot in slots:
        apply_status(slot)

    changed = _snapshot(slots) != before
    db.session.commit()

    if changed:
        logger.info(f"Synced capacity to {active_staff}: tenant={tenant_id} shop={shop_id} date={day}")
        emit(notifier, "capacity_changed", tenant_id, shop_id, day)
    return slots


def sync_upcoming(tenant_id, shop_id, from_day=None, notifier=None):
    """Sync every date from `from_day` on that already has slots."""
    from_day = from_day or date.today()
    days = [
        row.date
        for row in (
            db.session.query(Slot.date)
            .filter(Slot.tenant_id == tenant_id, Slot.shop_id == shop_id, Slot.date >= from_day)
            .distinct()
            .order_by(Slot.date.asc())
        )
    ]

    slots = []
    for day in days:
        slots.extend(sync_capacity(tenant_id, shop_id, day, notifier=notifier))
    return slots


def reduce_capacity(tenant_id, shop_id, slot_id, new_capacity, notifier=None):
    if new_capacity is None or new_capacity < 1:
        raise ValidationError("Valid capacity is required")

    slot = get_slot(tenant_id, shop_id, slot_id)
    if new_capacity > max(slot.max_capacity, slot.booked_count):
        raise ValidationError("Capacity cannot exceed the active staff count")

    result = db.session.execute(
        update(Slot)
        .where(Slot.id == slot.id, Slot.booked_count <= new_capacity)
        .values(capacity=new_capacity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise ConflictError("Cannot reduce capacity below current bookings")

    db.session.refresh(slot)
    apply_status(slot)
    db.session.commit()

    emit(notifier, "capacity_changed", tenant_id, shop_id, slot.date)
    return slot
