from models import db
from models.slot import Slot
from models.booking import Booking
from scheduling.errors import NotFoundError
from scheduling.status import OCCUPYING_STATUSES, apply_status


def get_slot(tenant_id, shop_id, slot_id):
    slot = Slot.query.filter_by(id=slot_id, tenant_id=tenant_id, shop_id=shop_id).first()
    if not slot:
        raise NotFoundError("Slot")
    return slot


def lock_slot(tenant_id, shop_id, slot_id):
    """Load a slot with its row write-locked until the transaction ends."""
    slot = (
        Slot.query
        .filter_by(id=slot_id, tenant_id=tenant_id, shop_id=shop_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not slot:
        raise NotFoundError("Slot")
    return slot


def resolve_slot_id(tenant_id, shop_id, day, start_time) -> int:
    slot_id = (
        db.session.query(Slot.id)
        .filter_by(tenant_id=tenant_id, shop_id=shop_id, date=day, start_time=start_time)
        .scalar()
    )
    if slot_id is None:
        raise NotFoundError("Slot")
    return slot_id


def get_booking(tenant_id, shop_id, booking_id):
    booking = Booking.query.filter_by(id=booking_id, tenant_id=tenant_id, shop_id=shop_id).first()
    if not booking:
        raise NotFoundError("Booking")
    return booking


def occupying_count(slot_id) -> int:
    return (
        db.session.query(db.func.count(Booking.id))
        .filter(Booking.slot_id == slot_id, Booking.status.in_(OCCUPYING_STATUSES))
        .scalar()
    ) or 0


def trim_overflow(slot):
    """
    Give back overflow seats opened for priority walk-ins once they are no
    longer occupied; capacity above max_capacity only ever covers bookings.
    """
    if slot.capacity > slot.max_capacity:
        slot.capacity = max(slot.max_capacity, slot.booked_count)
    return slot


def recount_slot(slot):
    """
    Set booked_count to the live number of occupying bookings and re-derive
    status. Callers must already hold the slot's write lock.
    """
    slot.booked_count = occupying_count(slot.id)
    trim_overflow(slot)
    return apply_status(slot)
