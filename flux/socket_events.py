"""
Socket.IO handlers for realtime fan-out.
- Every authenticated connection joins its own ``user:<id>`` room
- Admins also join the admin room
- Drivers join a ``region:<state>:<city>`` room to hear about new orders

Clients never name rooms directly; membership follows from the bearer
token, so nobody can subscribe to someone else's facts.
"""
import logging

from flask import request, session
from flask_socketio import emit, join_room, leave_room

from flux import db
from flux.errors import AuthenticationRequired
from flux.extensions import socketio
from flux.models import User
from flux.services.fanout import ADMIN_ROOM, region_room, user_room
from flux.utils.auth import decode_token, get_bearer_token

logger = logging.getLogger(__name__)


def _authenticate(auth):
    """Resolve the connecting user from ``auth.token``, ``?token=`` or the Authorization header"""
    raw = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = get_bearer_token(raw or request.args.get('token') or request.headers.get('Authorization', ''))
    if not token:
        return None
    try:
        payload = decode_token(token)
    except AuthenticationRequired:
        return None

    user_id = payload.get('sub') or payload.get('user_id')
    user = db.session.get(User, str(user_id)) if user_id else None
    if user is None or user.is_banned:
        return None
    return user


@socketio.on("connect")
def handle_connect(auth=None):
    user = _authenticate(auth)
    if user is None:
        logger.info("Refused socket connection %s", request.sid)
        return False

    session['user_id'] = user.id
    session['role'] = user.role
    join_room(user_room(user.id))
    if user.role == 'admin':
        join_room(ADMIN_ROOM)
    logger.info("Socket %s connected as %s (%s)", request.sid, user.id, user.role)


@socketio.on("disconnect")
def handle_disconnect():
    logger.info("Socket %s disconnected (%s)", request.sid, session.get('user_id'))


@socketio.on("region:join")
def handle_region_join(data=None):
    """Driver subscribes to new orders in a city. data = { city?, state? }, defaults to the profile"""
    if session.get('role') != 'driver':
        emit("region:error", {"error": "Only drivers receive regional orders"}, room=request.sid)
        return

    data = data if isinstance(data, dict) else {}
    user = db.session.get(User, session['user_id'])
    city = data.get('city') or user.city
    state = data.get('state') or user.state
    if not city:
        emit("region:error", {"error": "city is required"}, room=request.sid)
        return

    room = region_room(state, city)
    previous = session.get('region_room')
    if previous and previous != room:
        leave_room(previous)
    join_room(room)
    session['region_room'] = room
    emit("joined", {"room": room}, room=request.sid)


@socketio.on("region:leave")
def handle_region_leave():
    room = session.pop('region_room', None)
    if room:
        leave_room(room)
