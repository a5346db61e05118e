import logging
from typing import Callable

from duel.errors import InvalidRequest
from duel.models import DIFFICULTIES

logger = logging.getLogger(__name__)


def _normalize_id(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ChallengeService:
    """Validates a challenge, opens a room for it and wires its transport."""

    def __init__(self, runtime, transport_factory: Callable):
        self._runtime = runtime
        self._transport_factory = transport_factory

    def create_challenge(self, from_player_id, to_player_id, difficulty) -> str:
        challenger = _normalize_id(from_player_id)
        opponent = _normalize_id(to_player_id)
        if not challenger or not opponent:
            raise InvalidRequest('fromPlayerId and toPlayerId required')
        if challenger == opponent:
            raise InvalidRequest('Players cannot challenge themselves')
        level = (difficulty or '').strip().lower() if isinstance(difficulty, str) else ''
        if level not in DIFFICULTIES:
            raise InvalidRequest('difficulty must be one of easy, medium, hard')

        # NotFound propagates to the caller before any room exists
        players = self._runtime.players
        first = players.find_by_id(challenger)
        second = players.find_by_id(opponent)

        if first.id == second.id:
            raise InvalidRequest('Players cannot challenge themselves')
        challenger, opponent = str(first.id), str(second.id)

        registry = self._runtime.registry
        room_id = registry.create(
            [challenger, opponent],
            level,
            display_names={challenger: first.username, opponent: second.username},
        )
        room = registry.get(room_id)
        session = self._runtime.new_session(room, self._transport_factory(room_id))
        registry.attach(room_id, session)
        logger.info(f"[challenge] room={room_id} from={challenger} to={opponent} difficulty={level}")
        return room_id
