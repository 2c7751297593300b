from datetime import date, timedelta

import pytest

from app import create_app
from config import Config
from models import db
from models.customer import Customer
from models.service import Service
from models.shop import Shop, ShopSettings, WEEKDAYS
from models.staff import StaffProfile
from models.tenant import Tenant
from scheduling.generator import generate_day
from scheduling.notifications import NotificationSink
from scheduling.providers import default_settings


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def capacity_changed(self, tenant_id, shop_id, day=None):
        self.events.append(("capacity_changed", tenant_id, shop_id, day))

    def booking_changed(self, tenant_id, shop_id, booking):
        self.events.append(("booking_changed", tenant_id, shop_id, booking.id))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


class ExplodingSink(NotificationSink):
    def capacity_changed(self, tenant_id, shop_id, day=None):
        raise RuntimeError("sink down")

    def booking_changed(self, tenant_id, shop_id, booking):
        raise RuntimeError("sink down")


def _test_config(db_path):
    class _Config(Config):
        TESTING = True
        # File database so worker threads share it
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(db_path)
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        NOTIFY_BACKEND = "none"
        LOG_LEVEL = "WARNING"

    return _Config


@pytest.fixture
def app(tmp_path):
    app = create_app(_test_config(tmp_path / "shopslot-test.db"))
    app.extensions["notifier"] = RecordingSink()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sink(app):
    return app.extensions["notifier"]


@pytest.fixture
def day():
    return date.today() + timedelta(days=1)


@pytest.fixture
def tenant(app):
    t = Tenant(name="Acme Salons", slug="acme")
    db.session.add(t)
    db.session.commit()
    return t


@pytest.fixture
def other_tenant(app):
    t = Tenant(name="Other Co", slug="other")
    db.session.add(t)
    db.session.commit()
    return t


def make_shop(tenant, start="09:00", end="10:00", duration=30, **settings):
    hours = {d: {"start": start, "end": end, "isOpen": True} for d in WEEKDAYS}
    shop = Shop(tenant_id=tenant.id, name="Main Street", working_hours=hours, slot_duration=duration)
    db.session.add(shop)
    db.session.flush()
    values = default_settings()
    values.update(settings)
    db.session.add(ShopSettings(tenant_id=tenant.id, shop_id=shop.id, **values))
    db.session.commit()
    return shop


def make_staff(shop, n=1):
    rows = []
    offset = StaffProfile.query.filter_by(shop_id=shop.id).count()
    for i in range(offset, offset + n):
        p = StaffProfile(
            tenant_id=shop.tenant_id,
            shop_id=shop.id,
            name=f"Stylist {shop.id}-{i}",
            email=f"stylist{i}@shop{shop.id}.test",
        )
        db.session.add(p)
        rows.append(p)
    db.session.commit()
    return rows


def make_customer(tenant, email="jane@example.com"):
    c = Customer(tenant_id=tenant.id, email=email, first_name="Jane")
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def shop(tenant):
    return make_shop(tenant)


@pytest.fixture
def staff(shop):
    return make_staff(shop, 2)


@pytest.fixture
def service(shop):
    s = Service(tenant_id=shop.tenant_id, shop_id=shop.id, name="Haircut", price=1000, duration_minutes=30)
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def customer(tenant):
    return make_customer(tenant)


@pytest.fixture
def slots(shop, staff, day):
    """Two 30-minute slots with capacity 2 on `day`."""
    return generate_day(shop.tenant_id, shop.id, day)


def headers(tenant, role="ADMIN", actor="1"):
    h = {"X-Tenant-ID": str(tenant.id)}
    if actor is not None:
        h["X-Actor-ID"] = str(actor)
    if role is not None:
        h["X-Actor-Role"] = role
    return h
