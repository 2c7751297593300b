"""
Store-backed collaborators the engine consumes: tenant/shop resolution, the
active staff roster, the service catalog and per-shop booking settings.
"""

from flask import current_app

from models import db
from models.tenant import Tenant
from models.shop import Shop, ShopSettings
from models.staff import StaffProfile
from models.service import Service
from models.customer import Customer
from scheduling.errors import NotFoundError


def get_tenant(tenant_id):
    tenant = Tenant.query.filter_by(id=tenant_id, is_active=True).first()
    if not tenant:
        raise NotFoundError("Tenant")
    return tenant


def get_shop(tenant_id, shop_id):
    shop = Shop.query.filter_by(id=shop_id, tenant_id=tenant_id, is_active=True).first()
    if not shop:
        raise NotFoundError("Shop")
    return shop


def count_active_staff(tenant_id, shop_id) -> int:
    return (
        db.session.query(db.func.count(StaffProfile.id))
        .filter(
            StaffProfile.tenant_id == tenant_id,
            StaffProfile.shop_id == shop_id,
            StaffProfile.is_active.is_(True),
        )
        .scalar()
    ) or 0


def get_active_staff(tenant_id, shop_id, staff_id):
    staff = StaffProfile.query.filter_by(
        id=staff_id, tenant_id=tenant_id, shop_id=shop_id, is_active=True
    ).first()
    if not staff:
        raise NotFoundError("Staff")
    return staff


def get_service(tenant_id, shop_id, service_id, active_only=True):
    q = Service.query.filter_by(id=service_id, tenant_id=tenant_id, shop_id=shop_id)
    if active_only:
        q = q.filter_by(is_active=True)
    service = q.first()
    if not service:
        raise NotFoundError("Service")
    return service


def get_customer(tenant_id, customer_id):
    customer = Customer.query.filter_by(id=customer_id, tenant_id=tenant_id).first()
    if not customer:
        raise NotFoundError("Customer")
    return customer


def default_settings() -> dict:
    return {
        "booking_advance_days": current_app.config.get("DEFAULT_BOOKING_ADVANCE_DAYS", 7),
        "auto_confirm_booking": True,
        "allow_price_editing": True,
        "max_discount_percentage": current_app.config.get("DEFAULT_MAX_DISCOUNT_PERCENTAGE", 20),
        "allow_walkin_overbooking": current_app.config.get("DEFAULT_WALKIN_OVERBOOKING", True),
    }


def get_settings(tenant_id, shop_id):
    settings = ShopSettings.query.filter_by(tenant_id=tenant_id, shop_id=shop_id).first()
    if settings is None:
        # Transient defaults; never added to the session
        settings = ShopSettings(tenant_id=tenant_id, shop_id=shop_id, **default_settings())
    return settings
