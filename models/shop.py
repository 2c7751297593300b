from datetime import datetime
from models.db import db

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def default_working_hours():
    hours = {day: {"start": "09:00", "end": "18:00", "isOpen": True} for day in WEEKDAYS}
    hours["sunday"]["isOpen"] = False
    return hours


class Shop(db.Model):
    __tablename__ = "shops"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30), nullable=True)

    # weekday name -> {"start": "HH:MM", "end": "HH:MM", "isOpen": bool}
    working_hours = db.Column(db.JSON, nullable=False, default=default_working_hours)
    slot_duration = db.Column(db.Integer, nullable=False, default=30)  # minutes

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def hours_for(self, day):
        return (self.working_hours or {}).get(WEEKDAYS[day.weekday()])


class ShopSettings(db.Model):
    __tablename__ = "shop_settings"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, unique=True)

    booking_advance_days = db.Column(db.Integer, nullable=False, default=7)
    auto_confirm_booking = db.Column(db.Boolean, nullable=False, default=True)
    allow_price_editing = db.Column(db.Boolean, nullable=False, default=True)
    max_discount_percentage = db.Column(db.Integer, nullable=True, default=20)  # NULL = no cap
    allow_walkin_overbooking = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
