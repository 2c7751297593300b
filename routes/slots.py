from datetime import date

from flask import Blueprint, request, jsonify, g

from models.slot import Slot
from scheduling.availability import list_available, is_available
from scheduling.blocking import block_slot, block_slot_at, unblock_slot, unblock_slot_at
from scheduling.capacity import sync_capacity, reduce_capacity
from scheduling.generator import generate_range
from scheduling.notifications import current_notifier
from scheduling.providers import get_shop
from security.rbac import require_roles
from utils.auth_context import tenant_required
from utils.audit import log_event
from utils.parsing import parse_date, parse_hhmm, parse_int
from utils.serializers import slot_to_dict, booking_to_dict

slots_bp = Blueprint("slots", __name__, url_prefix="/shops/<int:shop_id>/slots")


def _parse_selector(data):
    # Composite selector: {"date": "YYYY-MM-DD", "slot_time": "HH:MM"}
    date_str = data.get("date")
    slot_time = data.get("slot_time") or data.get("slotTime")
    if not date_str or not slot_time:
        raise ValueError("date and slot_time are required")
    try:
        return parse_date(date_str), parse_hhmm(slot_time)
    except ValueError:
        raise ValueError("Invalid date/slot_time. Use YYYY-MM-DD and HH:MM")


def _reason(data):
    return (data.get("reason") or "").strip() or None


def _block_response(slot, cancelled):
    log_event(
        "SLOT_BLOCK",
        entity="slot",
        entity_id=slot.id,
        metadata={"reason": slot.blocked_reason, "cancelled_bookings": [b.id for b in cancelled]},
    )
    return jsonify(
        message="Slot blocked",
        slot=slot_to_dict(slot),
        cancelled_bookings=[booking_to_dict(b) for b in cancelled],
    ), 200


# ---------- ADMIN: generate / sync ----------
@slots_bp.post("/generate")
@require_roles("ADMIN")
@tenant_required
def generate(shop_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get("start_date") or not data.get("end_date"):
        return jsonify(error="start_date and end_date are required"), 400
    try:
        start = parse_date(data["start_date"])
        end = parse_date(data["end_date"])
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    slots = generate_range(g.tenant_id, shop_id, start, end)

    log_event("SLOT_GENERATE", entity="shop", entity_id=shop_id,
              metadata={"start_date": start, "end_date": end, "created": len(slots)})
    return jsonify(slots=[slot_to_dict(s) for s in slots], count=len(slots)), 201


@slots_bp.post("/sync")
@require_roles("ADMIN")
@tenant_required
def sync(shop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        day = parse_date(data["date"]) if data.get("date") else date.today()
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    slots = sync_capacity(g.tenant_id, shop_id, day, notifier=current_notifier())
    return jsonify(slots=[slot_to_dict(s) for s in slots], count=len(slots)), 200


# ---------- ADMIN/STAFF: day view ----------
@slots_bp.get("")
@require_roles("ADMIN", "STAFF")
@tenant_required
def list_day(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    try:
        day = parse_date(request.args["date"]) if request.args.get("date") else date.today()
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    slots = (
        Slot.query
        .filter_by(tenant_id=g.tenant_id, shop_id=shop_id, date=day)
        .order_by(Slot.start_time.asc())
        .all()
    )
    return jsonify([slot_to_dict(s) for s in slots]), 200


# ---------- PUBLIC: availability ----------
@slots_bp.get("/available")
@tenant_required
def available(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    try:
        start = parse_date(request.args["start_date"]) if request.args.get("start_date") else date.today()
        end = parse_date(request.args["end_date"]) if request.args.get("end_date") else start
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    return jsonify([slot_to_dict(s) for s in list_available(g.tenant_id, shop_id, start, end)]), 200


@slots_bp.get("/<int:slot_id>/availability")
@tenant_required
def availability(shop_id: int, slot_id: int):
    return jsonify(slot_id=slot_id, available=is_available(g.tenant_id, slot_id, shop_id=shop_id)), 200


# ---------- ADMIN: block / unblock ----------
@slots_bp.post("/block")
@require_roles("ADMIN")
@tenant_required
def block_by_time(shop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        day, start_time = _parse_selector(data)
    except ValueError as e:
        return jsonify(error=str(e)), 400

    slot, cancelled = block_slot_at(
        g.tenant_id, shop_id, day, start_time, g.actor_id, reason=_reason(data), notifier=current_notifier()
    )
    return _block_response(slot, cancelled)


@slots_bp.post("/<int:slot_id>/block")
@require_roles("ADMIN")
@tenant_required
def block_by_id(shop_id: int, slot_id: int):
    data = request.get_json(silent=True) or {}
    slot, cancelled = block_slot(
        g.tenant_id, shop_id, slot_id, g.actor_id, reason=_reason(data), notifier=current_notifier()
    )
    return _block_response(slot, cancelled)


@slots_bp.post("/unblock")
@require_roles("ADMIN")
@tenant_required
def unblock_by_time(shop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        day, start_time = _parse_selector(data)
    except ValueError as e:
        return jsonify(error=str(e)), 400

    slot = unblock_slot_at(g.tenant_id, shop_id, day, start_time, notifier=current_notifier())
    log_event("SLOT_UNBLOCK", entity="slot", entity_id=slot.id)
    return jsonify(message="Slot unblocked", slot=slot_to_dict(slot)), 200


@slots_bp.post("/<int:slot_id>/unblock")
@require_roles("ADMIN")
@tenant_required
def unblock_by_id(shop_id: int, slot_id: int):
    slot = unblock_slot(g.tenant_id, shop_id, slot_id, notifier=current_notifier())
    log_event("SLOT_UNBLOCK", entity="slot", entity_id=slot.id)
    return jsonify(message="Slot unblocked", slot=slot_to_dict(slot)), 200


# ---------- ADMIN: manual capacity ----------
@slots_bp.patch("/<int:slot_id>/capacity")
@require_roles("ADMIN")
@tenant_required
def update_capacity(shop_id: int, slot_id: int):
    data = request.get_json(silent=True) or {}
    try:
        capacity = parse_int(data.get("capacity"), "capacity")
    except ValueError as e:
        return jsonify(error=str(e)), 400

    slot = reduce_capacity(g.tenant_id, shop_id, slot_id, capacity, notifier=current_notifier())

    log_event("SLOT_CAPACITY_UPDATE", entity="slot", entity_id=slot.id, metadata={"capacity": capacity})
    return jsonify(slot_to_dict(slot)), 200
