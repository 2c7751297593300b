"""
Slot capacity & booking lifecycle engine.

Every operation is scoped by tenant and shop and commits its own
transaction; notifications are emitted only after a successful commit.
"""

from .generator import generate_day, generate_range
from .capacity import sync_capacity, sync_upcoming, reduce_capacity
from .admission import (
    create_online_booking,
    create_walkin_booking,
    confirm_booking,
    mark_arrived,
    mark_no_show,
    start_service,
    complete_service,
    cancel_booking,
    edit_price,
    list_shop_bookings,
    list_customer_bookings,
)
from .blocking import block_slot, block_slot_at, unblock_slot, unblock_slot_at
from .availability import list_available, is_available, require_available
from .status import derive_status

__all__ = [
    "generate_day",
    "generate_range",
    "sync_capacity",
    "sync_upcoming",
    "reduce_capacity",
    "create_online_booking",
    "create_walkin_booking",
    "confirm_booking",
    "mark_arrived",
    "mark_no_show",
    "start_service",
    "complete_service",
    "cancel_booking",
    "edit_price",
    "list_shop_bookings",
    "list_customer_bookings",
    "block_slot",
    "block_slot_at",
    "unblock_slot",
    "unblock_slot_at",
    "list_available",
    "is_available",
    "require_available",
    "derive_status",
]
