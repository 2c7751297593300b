import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.slot import Slot
from scheduling.errors import NoStaffError, ValidationError
from scheduling.providers import get_shop, count_active_staff
from scheduling.status import apply_status
from utils.parsing import parse_hhmm, minutes_of, time_of

logger = logging.getLogger(__name__)


def slot_windows(open_at, close_at, duration: int):
    """
    Tile [open_at, close_at) into fixed windows of `duration` minutes.
    A trailing window that would run past closing is dropped.
    """
    if duration < 1:
        raise ValidationError("Slot duration must be at least 1 minute")

    start = minutes_of(open_at)
    end = minutes_of(close_at)
    windows = []
    while start + duration <= end:
        windows.append((time_of(start), time_of(start + duration)))
        start += duration
    return windows


def _day_windows(shop, day):
    hours = shop.hours_for(day)
    if not hours or not hours.get("isOpen"):
        return []
    try:
        open_at = parse_hhmm(hours["start"])
        close_at = parse_hhmm(hours["end"])
    except (KeyError, ValueError):
        raise ValidationError(f"Invalid working hours for {day.strftime('%A').lower()}")
    duration = shop.slot_duration or current_app.config.get("DEFAULT_SLOT_DURATION", 30)
    return slot_windows(open_at, close_at, duration)


def _insert_missing(tenant_id, shop_id, day, windows, capacity):
    existing = {
        row.start_time
        for row in db.session.query(Slot.start_time).filter_by(
            tenant_id=tenant_id, shop_id=shop_id, date=day
        )
    }

    created = []
    for start, end in windows:
        if start in existing:
            continue
        slot = Slot(
            tenant_id=tenant_id,
            shop_id=shop_id,
            date=day,
            start_time=start,
            end_time=end,
            capacity=capacity,
            max_capacity=capacity,
            booked_count=0,
            is_blocked=False,
        )
        apply_status(slot)
        db.session.add(slot)
        created.append(slot)

    if created:
        db.session.commit()
    return created


def generate_day(tenant_id, shop_id, day):
    """Create the missing slots of one day; existing ones are left untouched."""
    shop = get_shop(tenant_id, shop_id)
    active_staff = count_active_staff(tenant_id, shop_id)
    if active_staff == 0:
        raise NoStaffError()

    windows = _day_windows(shop, day)
    if not windows:
        return []

    try:
        created = _insert_missing(tenant_id, shop_id, day, windows, active_staff)
    except IntegrityError:
        # A concurrent generator inserted some of the same keys; re-read and fill the rest
        db.session.rollback()
        created = _insert_missing(tenant_id, shop_id, day, windows, active_staff)

    if created:
        logger.info(f"Generated {len(created)} slots: tenant={tenant_id} shop={shop_id} date={day}")
    return created


def generate_range(tenant_id, shop_id, start_date, end_date):
    if end_date < start_date:
        raise ValidationError("end date must not be before start date")

    max_days = current_app.config.get("MAX_GENERATE_DAYS", 366)
    if (end_date - start_date).days + 1 > max_days:
        raise ValidationError(f"Cannot generate more than {max_days} days at once")

    slots = []
    day = start_date
    while day <= end_date:
        slots.extend(generate_day(tenant_id, shop_id, day))
        day += timedelta(days=1)
    return slots
