from sqlalchemy.exc import SQLAlchemyError

from duel import db
from duel.errors import NotFound, PersistenceError
from duel.models import Player


class PlayerStore:
    """Read and write player profiles and their per-difficulty ratings."""

    def find_by_id(self, player_id) -> Player:
        try:
            pk = int(player_id)
        except (TypeError, ValueError):
            raise NotFound(f'Player {player_id!r} not found')
        player = db.session.get(Player, pk)
        if player is None:
            raise NotFound(f'Player {player_id!r} not found')
        return player

    def create(self, username: str) -> Player:
        player = Player(username=username)
        self.save(player)
        return player

    def find_by_username(self, username: str):
        return Player.query.filter_by(username=username).first()

    def save(self, *players: Player) -> None:
        """Persist ``players`` in a single transaction."""
        try:
            for player in players:
                db.session.add(player)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f'Could not save players: {exc}') from exc
