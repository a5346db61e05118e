from datetime import datetime, timezone

from duel import db

DIFFICULTIES = ('easy', 'medium', 'hard')


def _utcnow():
    return datetime.now(timezone.utc)


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    ratings = db.relationship('PlayerRating', back_populates='player', cascade='all, delete-orphan')

    def rating_record(self, difficulty):
        for record in self.ratings:
            if record.difficulty == difficulty:
                return record
        return None

    def ensure_rating(self, difficulty, base_rating):
        """Return the rating record for ``difficulty``, creating it at ``base_rating`` when absent."""
        record = self.rating_record(difficulty)
        if record is None:
            record = PlayerRating(difficulty=difficulty, rating=base_rating)
            self.ratings.append(record)
        return record

    def to_dict(self, base_rating=1000):
        ratings = {}
        for difficulty in DIFFICULTIES:
            record = self.rating_record(difficulty)
            ratings[difficulty] = record.rating if record else base_rating
        return {
            'id': self.id,
            'username': self.username,
            'ratings': ratings,
        }


class PlayerRating(db.Model):
    __tablename__ = 'player_rating'
    __table_args__ = (db.UniqueConstraint('player_id', 'difficulty', name='uq_player_rating_difficulty'),)
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    difficulty = db.Column(db.String(16), nullable=False)
    rating = db.Column(db.Integer, nullable=False, default=1000)
    player = db.relationship('Player', back_populates='ratings')

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'difficulty': self.difficulty,
            'rating': self.rating,
        }
