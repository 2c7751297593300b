"""
Capacity/booking change notifications.

The engine only promises emit-after-commit, best-effort delivery: a sink that
raises is logged and ignored, never surfaced as a failure of the operation
that already committed. Fan-out to clients belongs to whoever consumes the
events.
"""

import json
import logging
import time

from flask import current_app

from utils.serializers import booking_to_dict

logger = logging.getLogger(__name__)


class NotificationSink:
    def capacity_changed(self, tenant_id, shop_id, day=None):
        raise NotImplementedError

    def booking_changed(self, tenant_id, shop_id, booking):
        raise NotImplementedError


class NullSink(NotificationSink):
    def capacity_changed(self, tenant_id, shop_id, day=None):
        pass

    def booking_changed(self, tenant_id, shop_id, booking):
        pass


class LoggingSink(NotificationSink):
    def capacity_changed(self, tenant_id, shop_id, day=None):
        logger.info(f"slot capacity changed: tenant={tenant_id} shop={shop_id} date={day}")

    def booking_changed(self, tenant_id, shop_id, booking):
        logger.info(
            f"booking changed: tenant={tenant_id} shop={shop_id} "
            f"booking={booking.id} status={booking.status}"
        )


class RedisQueueSink(NotificationSink):
    """Pushes JSON events onto a Redis list for the realtime gateway to drain."""

    def __init__(self, client, queue="events:slots"):
        self.client = client
        self.queue = queue

    def _push(self, event_type: str, payload: dict):
        event = {
            "type": event_type,
            **payload,
            "ts": int(time.time()),
        }
        self.client.rpush(self.queue, json.dumps(event))

    def capacity_changed(self, tenant_id, shop_id, day=None):
        self._push("slot_capacity_changed", {
            "tenant_id": tenant_id,
            "shop_id": shop_id,
            "date": day.isoformat() if day else None,
        })

    def booking_changed(self, tenant_id, shop_id, booking):
        self._push("booking_changed", {
            "tenant_id": tenant_id,
            "shop_id": shop_id,
            "booking": booking_to_dict(booking),
        })


def build_sink(config) -> NotificationSink:
    backend = (config.get("NOTIFY_BACKEND") or "none").lower()
    if backend == "log":
        return LoggingSink()
    if backend == "redis":
        from redis import Redis
        client = Redis.from_url(config["REDIS_URL"])
        return RedisQueueSink(client, queue=config.get("NOTIFY_QUEUE", "events:slots"))
    return NullSink()


def current_notifier():
    return current_app.extensions.get("notifier")


def emit(notifier, event: str, *args):
    """Deliver one event. Absent sink = no-op; sink errors never propagate."""
    if notifier is None:
        return
    try:
        getattr(notifier, event)(*args)
    except Exception as e:
        logger.error(f"Failed to emit {event}: {e}")
