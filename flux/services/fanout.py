"""
Fact publishing for realtime fan-out.

The core only states what happened ("order accepted", "credits extended");
delivery to devices belongs to an external pub/sub service. Publishing is
fire-and-forget: a failing transport is logged and never surfaces to the
request that produced the fact.
"""
import logging
from dataclasses import dataclass, field

from flask import current_app

logger = logging.getLogger(__name__)

ORDER_CREATED = 'order.created'
ORDER_ACCEPTED = 'order.accepted'
ORDER_CODES_READY = 'order.codes_ready'
DELIVERY_VALIDATED = 'delivery.validated'
ORDER_DRIVER_COMPLETED = 'order.driver_completed'
ORDER_COMPLETED = 'order.completed'
ORDER_CANCELLED = 'order.cancelled'
CREDITS_EXTENDED = 'credits.extended'
RATING_RECEIVED = 'rating.received'


@dataclass
class Fact:
    kind: str
    payload: dict
    # Individual recipients
    user_ids: list = field(default_factory=list)
    # (state, city) for regional broadcasts to drivers
    region: tuple = None


class LoggingFanout:
    """Default publisher: writes facts to the log for an external shipper to tail"""

    def publish(self, fact):
        logger.info(
            "fact %s users=%s region=%s payload=%s",
            fact.kind, fact.user_ids, fact.region, fact.payload,
        )


def user_room(user_id):
    return f"user:{user_id}"


def region_room(state, city):
    return f"region:{state or '-'}:{city}"


ADMIN_ROOM = "admin"


class SocketIOFanout:
    """Publishes facts to the Socket.IO rooms joined in flux.socket_events"""

    def __init__(self, socketio):
        self.socketio = socketio

    def publish(self, fact):
        for user_id in fact.user_ids:
            self.socketio.emit(fact.kind, fact.payload, room=user_room(user_id))
        if fact.region:
            self.socketio.emit(fact.kind, fact.payload, room=region_room(*fact.region))
        # Also notify admin room
        self.socketio.emit("admin:fact", {"kind": fact.kind, **fact.payload}, room=ADMIN_ROOM)


def build_fanout(app):
    """Construct the process-wide publisher selected by REALTIME_FANOUT"""
    transport = app.config.get('REALTIME_FANOUT', 'logging')
    if transport == 'socketio':
        from flux.extensions import socketio
        return SocketIOFanout(socketio)
    if transport != 'logging':
        logger.warning("Unknown REALTIME_FANOUT %r, falling back to logging", transport)
    return LoggingFanout()


def publish_fact(kind, payload, user_ids=None, region=None):
    """Publish a fact through the app's publisher without ever raising"""
    fact = Fact(kind=kind, payload=payload, user_ids=[u for u in (user_ids or []) if u], region=region)
    try:
        current_app.extensions['fanout'].publish(fact)
    except Exception:
        logger.exception("Failed to publish %s", kind)
    return fact
