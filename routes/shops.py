from datetime import datetime

from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.shop import Shop, ShopSettings, WEEKDAYS, default_working_hours
from models.staff import StaffProfile
from models.service import Service
from scheduling.capacity import sync_upcoming
from scheduling.notifications import current_notifier
from scheduling.providers import get_shop, default_settings
from security.rbac import require_roles
from utils.auth_context import tenant_required
from utils.audit import log_event
from utils.parsing import parse_hhmm, parse_int

shops_bp = Blueprint("shops", __name__, url_prefix="/shops")

SETTINGS_FIELDS = {
    "booking_advance_days": int,
    "auto_confirm_booking": bool,
    "allow_price_editing": bool,
    "max_discount_percentage": int,
    "allow_walkin_overbooking": bool,
}


def _validate_working_hours(hours):
    if not isinstance(hours, dict):
        raise ValueError("working_hours must be an object keyed by weekday")
    merged = default_working_hours()
    for day, entry in hours.items():
        day = day.strip().lower()
        if day not in WEEKDAYS or not isinstance(entry, dict):
            raise ValueError(f"Invalid working_hours entry: {day}")
        is_open = bool(entry.get("isOpen", True))
        if is_open:
            start = parse_hhmm(entry.get("start"))
            end = parse_hhmm(entry.get("end"))
            if end <= start:
                raise ValueError(f"{day}: end must be after start")
        merged[day] = {"start": entry.get("start"), "end": entry.get("end"), "isOpen": is_open}
    return merged


def _slot_duration_ok(minutes):
    return 5 <= minutes <= 24 * 60


def _shop_json(s):
    return {
        "id": s.id,
        "name": s.name,
        "phone": s.phone,
        "working_hours": s.working_hours,
        "slot_duration": s.slot_duration,
        "is_active": s.is_active,
        "created_at": s.created_at.isoformat(),
    }


def _staff_json(p):
    return {
        "id": p.id,
        "shop_id": p.shop_id,
        "name": p.name,
        "email": p.email,
        "is_active": p.is_active,
        "joined_at": p.joined_at.isoformat(),
        "left_at": p.left_at.isoformat() if p.left_at else None,
    }


def _service_json(s):
    return {
        "id": s.id,
        "name": s.name,
        "price": s.price,
        "duration_minutes": s.duration_minutes,
        "is_active": s.is_active,
    }


def _resync(shop_id):
    # Roster changed: resize today's and all later generated slots
    return sync_upcoming(g.tenant_id, shop_id, notifier=current_notifier())


# ---------- ADMIN: shops ----------
@shops_bp.post("")
@require_roles("ADMIN")
@tenant_required
def create_shop():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    phone = (data.get("phone") or "").strip() or None
    if not name:
        return jsonify(error="Shop name required"), 400

    try:
        slot_duration = parse_int(data.get("slot_duration"), "slot_duration") or 30
        hours = _validate_working_hours(data["working_hours"]) if data.get("working_hours") else default_working_hours()
    except (ValueError, AttributeError) as e:
        return jsonify(error=str(e)), 400
    if not _slot_duration_ok(slot_duration):
        return jsonify(error="slot_duration must be between 5 and 1440 minutes"), 400

    shop = Shop(tenant_id=g.tenant_id, name=name, phone=phone, working_hours=hours, slot_duration=slot_duration)
    db.session.add(shop)
    db.session.flush()
    db.session.add(ShopSettings(tenant_id=g.tenant_id, shop_id=shop.id, **default_settings()))
    db.session.commit()

    log_event("SHOP_CREATE", entity="shop", entity_id=shop.id)
    return jsonify(_shop_json(shop)), 201


@shops_bp.get("")
@tenant_required
def list_shops():
    shops = Shop.query.filter_by(tenant_id=g.tenant_id, is_active=True).order_by(Shop.created_at.desc()).all()
    return jsonify([_shop_json(s) for s in shops]), 200


@shops_bp.get("/<int:shop_id>")
@tenant_required
def shop_detail(shop_id: int):
    return jsonify(_shop_json(get_shop(g.tenant_id, shop_id))), 200


@shops_bp.patch("/<int:shop_id>")
@require_roles("ADMIN")
@tenant_required
def update_shop(shop_id: int):
    """
    Edit a shop's profile, hours or slot length. Slots already generated keep
    their windows; new hours apply to the next generation run.
    """
    shop = get_shop(g.tenant_id, shop_id)
    data = request.get_json(silent=True) or {}

    changed = []
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return jsonify(error="Shop name required"), 400
        shop.name = name
        changed.append("name")
    if "phone" in data:
        shop.phone = (data.get("phone") or "").strip() or None
        changed.append("phone")

    try:
        if "working_hours" in data:
            shop.working_hours = _validate_working_hours(data["working_hours"])
            changed.append("working_hours")
        if "slot_duration" in data:
            slot_duration = parse_int(data["slot_duration"], "slot_duration")
            if slot_duration is None or not _slot_duration_ok(slot_duration):
                raise ValueError("slot_duration must be between 5 and 1440 minutes")
            shop.slot_duration = slot_duration
            changed.append("slot_duration")
    except (ValueError, AttributeError) as e:
        db.session.rollback()
        return jsonify(error=str(e)), 400

    db.session.commit()
    log_event("SHOP_UPDATE", entity="shop", entity_id=shop.id, metadata={"fields": changed})
    return jsonify(_shop_json(shop)), 200


@shops_bp.patch("/<int:shop_id>/settings")
@require_roles("ADMIN")
@tenant_required
def update_settings(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    data = request.get_json(silent=True) or {}

    settings = ShopSettings.query.filter_by(tenant_id=g.tenant_id, shop_id=shop_id).first()
    if not settings:
        settings = ShopSettings(tenant_id=g.tenant_id, shop_id=shop_id, **default_settings())
        db.session.add(settings)

    changed = {}
    for field, kind in SETTINGS_FIELDS.items():
        if field not in data:
            continue
        value = data[field]
        if kind is int:
            try:
                value = parse_int(value, field)
            except ValueError as e:
                return jsonify(error=str(e)), 400
            if value is not None and value < 0:
                return jsonify(error=f"{field} cannot be negative"), 400
            if value is None and field != "max_discount_percentage":
                return jsonify(error=f"{field} is required"), 400
        elif not isinstance(value, bool):
            return jsonify(error=f"{field} must be true or false"), 400
        setattr(settings, field, value)
        changed[field] = value

    db.session.commit()
    log_event("SHOP_SETTINGS_UPDATE", entity="shop", entity_id=shop_id, metadata=changed)
    return jsonify({field: getattr(settings, field) for field in SETTINGS_FIELDS}), 200


# ---------- ADMIN: staff roster ----------
@shops_bp.get("/<int:shop_id>/staff")
@require_roles("ADMIN", "STAFF")
@tenant_required
def list_staff(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    rows = (
        StaffProfile.query
        .filter_by(tenant_id=g.tenant_id, shop_id=shop_id, is_active=True)
        .order_by(StaffProfile.joined_at.desc())
        .all()
    )
    return jsonify([_staff_json(p) for p in rows]), 200


@shops_bp.post("/<int:shop_id>/staff")
@require_roles("ADMIN")
@tenant_required
def add_staff(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not name or not email:
        return jsonify(error="name and email are required"), 400

    profile = StaffProfile.query.filter_by(tenant_id=g.tenant_id, shop_id=shop_id, email=email).first()
    if profile and profile.is_active:
        return jsonify(error="Staff already assigned to this shop"), 409

    created = profile is None
    if created:
        profile = StaffProfile(tenant_id=g.tenant_id, shop_id=shop_id, name=name, email=email)
        db.session.add(profile)
    else:
        # Reactivate
        profile.is_active = True
        profile.left_at = None
        profile.name = name

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Staff already assigned to this shop"), 409

    _resync(shop_id)
    log_event("STAFF_ADD" if created else "STAFF_REACTIVATE", entity="staff", entity_id=profile.id)
    return jsonify(_staff_json(profile)), 201 if created else 200


@shops_bp.post("/<int:shop_id>/staff/<int:staff_id>/deactivate")
@require_roles("ADMIN")
@tenant_required
def remove_staff(shop_id: int, staff_id: int):
    get_shop(g.tenant_id, shop_id)
    profile = StaffProfile.query.filter_by(id=staff_id, tenant_id=g.tenant_id, shop_id=shop_id).first()
    if not profile:
        return jsonify(error="Staff not found"), 404

    profile.is_active = False
    profile.left_at = datetime.utcnow()
    db.session.commit()

    _resync(shop_id)
    log_event("STAFF_REMOVE", entity="staff", entity_id=profile.id)
    return jsonify(message="Staff removed"), 200


# ---------- service catalog ----------
@shops_bp.get("/<int:shop_id>/services")
@tenant_required
def list_services(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    rows = (
        Service.query
        .filter_by(tenant_id=g.tenant_id, shop_id=shop_id, is_active=True)
        .order_by(Service.name.asc())
        .all()
    )
    return jsonify([_service_json(s) for s in rows]), 200


@shops_bp.post("/<int:shop_id>/services")
@require_roles("ADMIN")
@tenant_required
def create_service(shop_id: int):
    get_shop(g.tenant_id, shop_id)
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify(error="Service name required"), 400
    try:
        price = parse_int(data.get("price"), "price") or 0
        duration = parse_int(data.get("duration_minutes"), "duration_minutes") or 30
    except ValueError as e:
        return jsonify(error=str(e)), 400
    if price < 0:
        return jsonify(error="price cannot be negative"), 400

    service = Service(tenant_id=g.tenant_id, shop_id=shop_id, name=name, price=price, duration_minutes=duration)
    db.session.add(service)
    db.session.commit()

    log_event("SERVICE_CREATE", entity="service", entity_id=service.id)
    return jsonify(_service_json(service)), 201
