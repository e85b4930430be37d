from flask import request
from flask_socketio import join_room, leave_room, emit
from trivia import db
from trivia.models import Player
from trivia.services.sessions.notify import room_for
from typing import Dict, Any


# socket id -> {'session_pin': ..., 'player_id': ...}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _set_connected(player_id, connected: bool) -> None:
    if player_id is None:
        return
    Player.query.filter_by(id=player_id).update({'connected': connected}, synchronize_session=False)
    db.session.commit()


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx:
        _set_connected(ctx.get('player_id'), False)


def handle_join_session(data):
    pin = (data or {}).get('session_pin')
    if not pin:
        emit('error', {'message': 'session_pin is required'})
        return
    room = room_for(pin)
    join_room(room)
    player_id = (data or {}).get('player_id')
    _sid_to_ctx[_get_sid()] = {'session_pin': pin.upper(), 'player_id': player_id}
    _set_connected(player_id, True)
    emit('joined', {'room': room})


def handle_leave_session(data):
    pin = (data or {}).get('session_pin')
    if not pin:
        emit('error', {'message': 'session_pin is required'})
        return
    room = room_for(pin)
    leave_room(room)
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx:
        _set_connected(ctx.get('player_id'), False)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from trivia import socketio

    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('join_session', handle_join_session, namespace=namespace)
        socketio.on_event('leave_session', handle_leave_session, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
