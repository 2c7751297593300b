from flask import Blueprint, jsonify

from .shops import shops_bp
from .slots import slots_bp
from .bookings import bookings_bp
from .audit_logs import audit_bp

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200
