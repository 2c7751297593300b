def _iso(value):
    return value.isoformat() if value else None


def _hhmm(value):
    return value.strftime("%H:%M") if value else None


def slot_to_dict(s):
    return {
        "id": s.id,
        "shop_id": s.shop_id,
        "date": _iso(s.date),
        "start_time": _hhmm(s.start_time),
        "end_time": _hhmm(s.end_time),
        "capacity": s.capacity,
        "max_capacity": s.max_capacity,
        "booked_count": s.booked_count,
        "status": s.status,
        "is_blocked": s.is_blocked,
        "blocked_by": s.blocked_by,
        "blocked_reason": s.blocked_reason,
        "blocked_at": _iso(s.blocked_at),
        "unblock_at": _iso(s.unblock_at),
    }


def booking_to_dict(b):
    return {
        "id": b.id,
        "shop_id": b.shop_id,
        "slot_id": b.slot_id,
        "customer_id": b.customer_id,
        "service_id": b.service_id,
        "staff_id": b.staff_id,
        "booking_type": b.booking_type,
        "priority": b.priority,
        "status": b.status,
        "scheduled_at": _iso(b.scheduled_at),
        "original_price": b.original_price,
        "final_price": b.final_price,
        "price_edited": b.price_edited,
        "edited_by": b.edited_by,
        "edit_reason": b.edit_reason,
        "arrived_at": _iso(b.arrived_at),
        "started_at": _iso(b.started_at),
        "completed_at": _iso(b.completed_at),
        "cancelled_at": _iso(b.cancelled_at),
        "cancelled_by": b.cancelled_by,
        "cancelled_by_type": b.cancelled_by_type,
        "cancellation_reason": b.cancellation_reason,
        "created_at": _iso(b.created_at),
    }
