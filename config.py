import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as shopslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "shopslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Headers set by the upstream gateway after it has authenticated the caller
    TENANT_HEADER = "X-Tenant-ID"
    ACTOR_ID_HEADER = "X-Actor-ID"
    ACTOR_ROLE_HEADER = "X-Actor-Role"

    # Slot generation
    DEFAULT_SLOT_DURATION = int(os.getenv("DEFAULT_SLOT_DURATION", "30"))  # minutes
    MAX_GENERATE_DAYS = int(os.getenv("MAX_GENERATE_DAYS", "366"))

    # Booking policy defaults for shops without stored settings
    DEFAULT_BOOKING_ADVANCE_DAYS = int(os.getenv("DEFAULT_BOOKING_ADVANCE_DAYS", "7"))
    DEFAULT_MAX_DISCOUNT_PERCENTAGE = int(os.getenv("DEFAULT_MAX_DISCOUNT_PERCENTAGE", "20"))
    DEFAULT_WALKIN_OVERBOOKING = os.getenv("DEFAULT_WALKIN_OVERBOOKING", "true").lower() == "true"

    # Walk-in admission retries when the free/full guards race
    ADMISSION_MAX_RETRIES = int(os.getenv("ADMISSION_MAX_RETRIES", "3"))

    # Notifications: none, log, redis
    NOTIFY_BACKEND = os.getenv("NOTIFY_BACKEND", "log")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    NOTIFY_QUEUE = os.getenv("NOTIFY_QUEUE", "events:slots")

    # Basic app settings
    DEBUG = False
