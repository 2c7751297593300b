import logging
from datetime import date, timedelta

from flask import Flask, jsonify
from config import Config
from routes import health_bp, shops_bp, slots_bp, bookings_bp, audit_bp

from models import db
from flask_migrate import Migrate
from scheduling.errors import SchedulingError
from scheduling.notifications import build_sink
from utils.auth_context import load_current_actor


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_object is not None:
        app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(shops_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Capacity/booking change events go to the configured sink
    app.extensions["notifier"] = build_sink(app.config)

    @app.before_request
    def _load_actor():
        load_current_actor()

    @app.errorhandler(SchedulingError)
    def _scheduling_error(e):
        return jsonify(error=e.message), e.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp


    register_cli(app)


    return app

#-------------------------
import click
from models.tenant import Tenant
from scheduling.capacity import sync_upcoming, sync_capacity
from scheduling.generator import generate_range
from scheduling.providers import get_settings
from utils.audit import log_event
from utils.parsing import parse_date

def register_cli(app):
    @app.cli.command("create-tenant")
    @click.argument("name")
    @click.argument("slug")
    def create_tenant(name, slug):
        """Register a tenant (bootstrap)."""
        slug = slug.strip().lower()
        if Tenant.query.filter_by(slug=slug).first():
            print("Tenant already exists")
            return

        tenant = Tenant(name=name.strip(), slug=slug)
        db.session.add(tenant)
        db.session.commit()
        print(f"Tenant {tenant.slug} created with id {tenant.id}")

    @app.cli.command("generate-slots")
    @click.option("--tenant", "tenant_id", type=int, required=True)
    @click.option("--shop", "shop_id", type=int, required=True)
    @click.option("--start", "start_str", default=None, help="YYYY-MM-DD, defaults to today")
    @click.option("--end", "end_str", default=None, help="YYYY-MM-DD, defaults to the booking horizon")
    def generate_slots(tenant_id, shop_id, start_str, end_str):
        """Fill a shop's slots for a date range (scheduled range fill)."""
        start = parse_date(start_str) if start_str else date.today()
        if end_str:
            end = parse_date(end_str)
        else:
            end = start + timedelta(days=get_settings(tenant_id, shop_id).booking_advance_days)

        try:
            slots = generate_range(tenant_id, shop_id, start, end)
        except SchedulingError as e:
            raise click.ClickException(e.message)

        log_event("SLOT_GENERATE", entity="shop", entity_id=shop_id, tenant_id=tenant_id,
                  metadata={"start_date": start, "end_date": end, "created": len(slots), "source": "cli"})
        print(f"Created {len(slots)} slots for shop {shop_id} ({start} to {end})")

    @app.cli.command("sync-capacity")
    @click.option("--tenant", "tenant_id", type=int, required=True)
    @click.option("--shop", "shop_id", type=int, required=True)
    @click.option("--date", "date_str", default=None, help="YYYY-MM-DD; omit to sync every upcoming day")
    def sync_capacity_cmd(tenant_id, shop_id, date_str):
        """Resize slots to the current active staff count."""
        notifier = app.extensions.get("notifier")
        try:
            if date_str:
                slots = sync_capacity(tenant_id, shop_id, parse_date(date_str), notifier=notifier)
            else:
                slots = sync_upcoming(tenant_id, shop_id, notifier=notifier)
        except SchedulingError as e:
            raise click.ClickException(e.message)
        print(f"Synced {len(slots)} slots for shop {shop_id}")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
