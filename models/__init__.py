from .db import db
from .tenant import Tenant
from .shop import Shop, ShopSettings
from .staff import StaffProfile
from .service import Service
from .customer import Customer
from .slot import Slot
from .booking import Booking
from .audit_log import AuditLog
