AVAILABLE = "available"
FULL = "full"
BLOCKED = "blocked"

PENDING = "pending"
CONFIRMED = "confirmed"
ARRIVED = "arrived"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no_show"

# Bookings in these states hold a seat in their slot
OCCUPYING_STATUSES = (PENDING, CONFIRMED, ARRIVED, IN_PROGRESS)
BOOKING_STATUSES = OCCUPYING_STATUSES + (COMPLETED, CANCELLED, NO_SHOW)

CANCELLED_BY_TYPES = ("admin", "system", "customer", "staff")


def derive_status(is_blocked: bool, capacity: int, booked_count: int) -> str:
    """The one place a slot's status is computed."""
    if is_blocked:
        return BLOCKED
    if booked_count >= capacity:
        return FULL
    return AVAILABLE


def apply_status(slot):
    slot.status = derive_status(slot.is_blocked, slot.capacity, slot.booked_count)
    return slot
