from flask import Blueprint, jsonify, request

from duel import socketio
from duel.errors import InvalidRequest, NotFound
from duel.services.match import get_runtime
from duel.services.match.challenge import ChallengeService
from duel.services.match.transport import SocketIOTransport

match = Blueprint('match', __name__)


@match.route('/challenge', methods=['POST'])
def create_challenge():
    """
    Opens a room for two players. Both then join it over the socket.
    Body: { fromPlayerId, toPlayerId, difficulty }
    """
    data = request.get_json(silent=True) or {}
    service = ChallengeService(get_runtime(), lambda room_id: SocketIOTransport(socketio, room_id))
    try:
        room_id = service.create_challenge(data.get('fromPlayerId'), data.get('toPlayerId'), data.get('difficulty'))
    except InvalidRequest as exc:
        return jsonify({'error': exc.message}), 400
    except NotFound as exc:
        return jsonify({'error': exc.message}), 404
    return jsonify({'roomId': room_id}), 201


@match.route('/<string:room_id>', methods=['GET'])
def get_room_state(room_id):
    runtime = get_runtime()
    try:
        room = runtime.registry.get(room_id)
    except NotFound as exc:
        return jsonify({'error': exc.message}), 404
    payload = room.to_dict()
    payload['durations'] = {
        'round': runtime.settings.round_duration_sec,
        'settle': runtime.settings.settle_delay_sec,
    }
    return jsonify(payload)
