from datetime import datetime
from models.db import db

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_profiles.id"), nullable=True, index=True)

    booking_type = db.Column(db.String(20), nullable=False, default="online")  # online, walkin
    priority = db.Column(db.String(20), nullable=False, default="normal")  # normal, high

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # status values: pending, confirmed, arrived, in_progress, completed, cancelled, no_show
    scheduled_at = db.Column(db.DateTime, nullable=False, index=True)

    original_price = db.Column(db.Integer, nullable=False, default=0)
    final_price = db.Column(db.Integer, nullable=False, default=0)
    price_edited = db.Column(db.Boolean, default=False, nullable=False)
    edited_by = db.Column(db.String(80), nullable=True)
    edit_reason = db.Column(db.String(255), nullable=True)

    arrived_at = db.Column(db.DateTime, nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(80), nullable=True)
    cancelled_by_type = db.Column(db.String(20), nullable=True)  # admin, system, customer, staff
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
