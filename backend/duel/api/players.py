from flask import Blueprint, jsonify, request

from duel.errors import NotFound, PersistenceError
from duel.services.match import get_runtime

players = Blueprint('players', __name__)


@players.route('', methods=['POST'])
def create_player():
    """
    Registers a player profile. Credentials are handled elsewhere.
    """
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    if not username:
        return jsonify({'error': 'username is required'}), 400

    runtime = get_runtime()
    if runtime.players.find_by_username(username):
        return jsonify({'error': 'Username already taken'}), 400

    try:
        player = runtime.players.create(username)
    except PersistenceError as exc:
        return jsonify({'error': exc.message}), 500
    return jsonify(player.to_dict(base_rating=runtime.settings.base_rating)), 201


@players.route('/<player_id>', methods=['GET'])
def get_player(player_id):
    """
    Returns a profile with its per-difficulty ratings.
    """
    runtime = get_runtime()
    try:
        player = runtime.players.find_by_id(player_id)
    except NotFound as exc:
        return jsonify({'error': exc.message}), 404
    return jsonify(player.to_dict(base_rating=runtime.settings.base_rating))
