from datetime import datetime
from models.db import db

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    capacity = db.Column(db.Integer, nullable=False, default=0)
    max_capacity = db.Column(db.Integer, nullable=False, default=0)  # active staff at last sync
    booked_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default="available")
    # status values: available, full, blocked

    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    blocked_by = db.Column(db.String(80), nullable=True)
    blocked_reason = db.Column(db.String(255), nullable=True)
    blocked_at = db.Column(db.DateTime, nullable=True)
    unblock_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        # One slot per shop/day/start time (generation is idempotent on this key)
        db.UniqueConstraint("tenant_id", "shop_id", "date", "start_time", name="uq_shop_day_slot"),
    )

    @property
    def starts_at(self):
        return datetime.combine(self.date, self.start_time)
