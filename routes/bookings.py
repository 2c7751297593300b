from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.customer import Customer
from scheduling.admission import (
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
from scheduling.lookups import get_booking
from scheduling.notifications import current_notifier
from scheduling.providers import get_shop
from scheduling.status import BOOKING_STATUSES
from security.rbac import require_roles, has_role
from utils.auth_context import login_required, tenant_required
from utils.audit import log_event
from utils.parsing import parse_date, parse_int
from utils.serializers import booking_to_dict

bookings_bp = Blueprint("bookings", __name__)

CANCEL_TYPE_BY_ROLE = {"ADMIN": "admin", "STAFF": "staff", "CUSTOMER": "customer"}


def _actor_customer_id():
    return int(g.actor_id) if g.actor_id and g.actor_id.isdigit() else None


# ---------- CUSTOMERS: profile ----------
@bookings_bp.post("/customers")
@tenant_required
def register_customer():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    if not email:
        return jsonify(error="email is required"), 400

    customer = Customer(
        tenant_id=g.tenant_id,
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        first_name=(data.get("first_name") or "").strip() or None,
        last_name=(data.get("last_name") or "").strip() or None,
        source="online",
    )
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Customer already exists"), 409

    log_event("CUSTOMER_REGISTER", entity="customer", entity_id=customer.id)
    return jsonify(id=customer.id, email=customer.email), 201


# ---------- CUSTOMERS/STAFF: online booking ----------
@bookings_bp.post("/shops/<int:shop_id>/bookings")
@login_required
@tenant_required
def create_booking(shop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        slot_id = parse_int(data.get("slot_id"), "slot_id")
        service_id = parse_int(data.get("service_id"), "service_id")
        # Customers book for themselves; staff may book on a customer's behalf
        customer_id = _actor_customer_id() if has_role("CUSTOMER") else parse_int(data.get("customer_id"), "customer_id")
    except ValueError as e:
        return jsonify(error=str(e)), 400
    if not slot_id or not service_id or not customer_id:
        return jsonify(error="slot_id, service_id and customer_id are required"), 400

    booking = create_online_booking(
        g.tenant_id, shop_id, slot_id, service_id, customer_id, notifier=current_notifier()
    )

    log_event("BOOKING_CREATE", entity="booking", entity_id=booking.id, metadata={"slot_id": slot_id})
    return jsonify(booking_to_dict(booking)), 201


# ---------- STAFF/ADMIN: walk-in ----------
@bookings_bp.post("/shops/<int:shop_id>/bookings/walkin")
@require_roles("ADMIN", "STAFF")
@tenant_required
def create_walkin(shop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        slot_id = parse_int(data.get("slot_id"), "slot_id")
        service_id = parse_int(data.get("service_id"), "service_id")
        staff_id = parse_int(data.get("staff_id"), "staff_id")
        price = parse_int(data.get("price"), "price")
    except ValueError as e:
        return jsonify(error=str(e)), 400
    customer = data.get("customer")
    if not slot_id or not service_id or not isinstance(customer, dict):
        return jsonify(error="slot_id, service_id and customer are required"), 400

    booking = create_walkin_booking(
        g.tenant_id,
        shop_id,
        slot_id,
        service_id,
        customer,
        actor_id=g.actor_id,
        staff_id=staff_id,
        price=price,
        edit_reason=(data.get("reason") or "").strip() or None,
        notifier=current_notifier(),
    )

    log_event("BOOKING_WALKIN_CREATE", entity="booking", entity_id=booking.id,
              metadata={"slot_id": slot_id, "price_edited": booking.price_edited})
    return jsonify(booking_to_dict(booking)), 201


# ---------- STAFF/ADMIN: lifecycle ----------
@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/confirm")
@require_roles("ADMIN", "STAFF")
@tenant_required
def confirm(shop_id: int, booking_id: int):
    booking = confirm_booking(g.tenant_id, shop_id, booking_id, notifier=current_notifier())
    log_event("BOOKING_CONFIRM", entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/arrive")
@require_roles("ADMIN", "STAFF")
@tenant_required
def arrive(shop_id: int, booking_id: int):
    booking = mark_arrived(g.tenant_id, shop_id, booking_id, notifier=current_notifier())
    log_event("BOOKING_ARRIVED", entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/no-show")
@require_roles("ADMIN", "STAFF")
@tenant_required
def no_show(shop_id: int, booking_id: int):
    booking = mark_no_show(g.tenant_id, shop_id, booking_id, notifier=current_notifier())
    log_event("BOOKING_NO_SHOW", entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/start")
@require_roles("ADMIN", "STAFF")
@tenant_required
def start(shop_id: int, booking_id: int):
    data = request.get_json(silent=True) or {}
    try:
        staff_id = parse_int(data.get("staff_id"), "staff_id")
    except ValueError as e:
        return jsonify(error=str(e)), 400
    if not staff_id:
        return jsonify(error="staff_id required"), 400

    booking = start_service(g.tenant_id, shop_id, booking_id, staff_id, notifier=current_notifier())
    log_event("BOOKING_START", entity="booking", entity_id=booking.id, metadata={"staff_id": staff_id})
    return jsonify(booking_to_dict(booking)), 200


@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/complete")
@require_roles("ADMIN", "STAFF")
@tenant_required
def complete(shop_id: int, booking_id: int):
    booking = complete_service(g.tenant_id, shop_id, booking_id, notifier=current_notifier())
    log_event("BOOKING_COMPLETE", entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/price")
@require_roles("ADMIN", "STAFF")
@tenant_required
def change_price(shop_id: int, booking_id: int):
    data = request.get_json(silent=True) or {}
    try:
        price = parse_int(data.get("price"), "price")
    except ValueError as e:
        return jsonify(error=str(e)), 400

    booking = edit_price(
        g.tenant_id, shop_id, booking_id, price, g.actor_id,
        reason=(data.get("reason") or "").strip() or None,
        notifier=current_notifier(),
    )
    log_event("BOOKING_PRICE_EDIT", entity="booking", entity_id=booking.id,
              metadata={"final_price": booking.final_price, "original_price": booking.original_price})
    return jsonify(booking_to_dict(booking)), 200


# ---------- ANY ROLE: cancel ----------
@bookings_bp.post("/shops/<int:shop_id>/bookings/<int:booking_id>/cancel")
@login_required
@tenant_required
def cancel(shop_id: int, booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    by_type = CANCEL_TYPE_BY_ROLE.get(g.actor_role)
    if by_type is None:
        return jsonify(error="Forbidden"), 403

    if by_type == "customer":
        booking = get_booking(g.tenant_id, shop_id, booking_id)
        if booking.customer_id != _actor_customer_id():
            return jsonify(error="Booking not found"), 404

    booking = cancel_booking(
        g.tenant_id, shop_id, booking_id, g.actor_id,
        by_type=by_type, reason=reason, notifier=current_notifier(),
    )
    log_event("BOOKING_CANCEL", entity="booking", entity_id=booking.id,
              metadata={"reason": reason, "by": by_type})
    return jsonify(booking_to_dict(booking)), 200


# ---------- listings ----------
@bookings_bp.get("/shops/<int:shop_id>/bookings")
@require_roles("ADMIN", "STAFF")
@tenant_required
def shop_bookings(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    status = request.args.get("status")
    if status and status not in BOOKING_STATUSES:
        return jsonify(error="Unknown status"), 400
    try:
        day = parse_date(request.args["date"]) if request.args.get("date") else None
        staff_id = parse_int(request.args.get("staff_id"), "staff_id")
    except ValueError:
        return jsonify(error="Invalid filters"), 400

    rows = list_shop_bookings(g.tenant_id, shop_id, status=status, day=day, staff_id=staff_id)
    return jsonify([booking_to_dict(b) for b in rows]), 200


@bookings_bp.get("/bookings/me")
@require_roles("CUSTOMER")
@tenant_required
def my_bookings():
    customer_id = _actor_customer_id()
    if customer_id is None:
        return jsonify(error="Customer not found"), 404
    rows = list_customer_bookings(g.tenant_id, customer_id)
    return jsonify([booking_to_dict(b) for b in rows]), 200
