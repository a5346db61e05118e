from flask import current_app, request
from flask_socketio import join_room, leave_room, emit
from typing import Dict, Any
import threading

from duel.services.match import get_runtime
from duel.services.match.messages import AnswerSubmitted, Connected, Disconnected
from duel.services.match.transport import channel_for

# sid -> {'room_id', 'player_id'} for endpoints that joined a match
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_ctx_lock = threading.Lock()


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _session_for(room_id):
    room = get_runtime().registry.find(room_id)
    return room.session if room is not None else None


def _drop_replaced_endpoints(room_id, player_id, sid):
    """Unbind other endpoints that joined as the same player in the same room."""
    with _ctx_lock:
        stale = [(other, ctx) for other, ctx in _sid_to_ctx.items()
                 if other != sid and ctx['room_id'] == room_id and ctx['player_id'] == player_id]
        for other, _ in stale:
            del _sid_to_ctx[other]
    for other, ctx in stale:
        leave_room(channel_for(room_id), sid=other, namespace=ctx.get('namespace'))
        current_app.logger.info(f"[socket-replaced] room={room_id} player={player_id} old={other} new={sid}")


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_match(data):
    data = data or {}
    room_id = data.get('roomId')
    player_id = data.get('playerId')
    if not room_id or player_id in (None, ''):
        emit('error', {'message': 'roomId and playerId are required'})
        return
    player_id = str(player_id)
    room = get_runtime().registry.find(room_id)
    if room is None or room.session is None:
        emit('error', {'message': 'Match not found'})
        return
    if player_id not in room.participants:
        emit('error', {'message': 'You are not a player in this match'})
        return

    sid = _get_sid()
    with _ctx_lock:
        previous = _sid_to_ctx.get(sid)
    if previous and (previous['room_id'], previous['player_id']) != (room_id, player_id):
        # This endpoint switches to another seat; free the old one first
        _release_endpoint(sid)
        leave_room(channel_for(previous['room_id']))
    _drop_replaced_endpoints(room_id, player_id, sid)

    join_room(channel_for(room_id))
    with _ctx_lock:
        _sid_to_ctx[sid] = {'room_id': room_id, 'player_id': player_id, 'namespace': request.namespace}
    emit('joined', {'roomId': room_id, 'playerId': player_id})
    room.session.tell(Connected(player_id, sid))


def handle_submit_answer(data):
    data = data or {}
    with _ctx_lock:
        ctx = _sid_to_ctx.get(_get_sid())
    if not ctx:
        emit('error', {'message': 'Join a match before answering'})
        return
    session = _session_for(ctx['room_id'])
    if session is None:
        emit('error', {'message': 'Match not found'})
        return
    session.tell(AnswerSubmitted(ctx['player_id'], data.get('answer'), data.get('timeLeft', 0)))


def _release_endpoint(sid):
    with _ctx_lock:
        ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return None
    session = _session_for(ctx['room_id'])
    if session is not None:
        session.tell(Disconnected(ctx['player_id'], sid))
    return ctx


def handle_leave_match(data=None):
    ctx = _release_endpoint(_get_sid())
    if ctx:
        leave_room(channel_for(ctx['room_id']))
        emit('left', {'roomId': ctx['room_id']})


def handle_disconnect(*args):
    ctx = _release_endpoint(_get_sid())
    if ctx:
        current_app.logger.info(f"[socket-disconnect] room={ctx['room_id']} player={ctx['player_id']}")


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from duel import socketio

    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('joinMatch', handle_join_match, namespace=namespace)
        socketio.on_event('submitAnswer', handle_submit_answer, namespace=namespace)
        socketio.on_event('leaveMatch', handle_leave_match, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
