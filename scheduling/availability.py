from sqlalchemy import and_, or_

from models.slot import Slot
from scheduling.errors import BlockedSlotError, FullSlotError, NotFoundError, ValidationError
from scheduling.status import AVAILABLE


def _bookable(q):
    return q.filter(
        Slot.is_blocked.is_(False),
        Slot.status == AVAILABLE,
        Slot.booked_count < Slot.capacity,
    )


def _after(q, day, start_time, slot_id):
    return q.filter(
        or_(
            Slot.date > day,
            and_(Slot.date == day, Slot.start_time > start_time),
            and_(Slot.date == day, Slot.start_time == start_time, Slot.id > slot_id),
        )
    )


def list_available(tenant_id, shop_id, start_date, end_date, batch_size=100):
    """
    Yield the customer-visible slots of a shop between two dates (inclusive),
    ordered by day and start time. Call again to restart from the beginning.
    """
    if end_date < start_date:
        raise ValidationError("end date must not be before start date")

    q = _bookable(
        Slot.query.filter(
            Slot.tenant_id == tenant_id,
            Slot.shop_id == shop_id,
            Slot.date >= start_date,
            Slot.date <= end_date,
        )
    ).order_by(Slot.date.asc(), Slot.start_time.asc(), Slot.id.asc())

    # Fetched in pages keyed on the last (date, start_time, id) handed out, so
    # slots filling up between pages never shift later ones out of view
    last = None
    while True:
        page_q = q if last is None else _after(q, *last)
        page = page_q.limit(batch_size).all()
        if page:
            tail = page[-1]
            last = (tail.date, tail.start_time, tail.id)
        yield from page
        if len(page) < batch_size:
            return


def _find(tenant_id, slot_id, shop_id=None):
    q = Slot.query.filter_by(id=slot_id, tenant_id=tenant_id)
    if shop_id is not None:
        q = q.filter_by(shop_id=shop_id)
    return q.first()


def is_available(tenant_id, slot_id, shop_id=None) -> bool:
    slot = _find(tenant_id, slot_id, shop_id)
    if not slot:
        return False
    return not slot.is_blocked and slot.status == AVAILABLE and slot.booked_count < slot.capacity


def require_available(tenant_id, slot_id, shop_id=None):
    """Pre-check for online admission; the seat itself is claimed atomically later."""
    slot = _find(tenant_id, slot_id, shop_id)
    if not slot:
        raise NotFoundError("Slot")
    if slot.is_blocked:
        raise BlockedSlotError()
    if slot.status != AVAILABLE or slot.booked_count >= slot.capacity:
        raise FullSlotError()
    return slot
