import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from duel.services.questions import Question


class RoomStatus(str, enum.Enum):
    CREATED = 'created'
    AWAITING_PLAYERS = 'awaiting_players'
    IN_PROGRESS = 'in_progress'
    ENDED = 'ended'


@dataclass
class Room:
    """State of one match. Mutated only by the room's MatchSession."""

    id: str
    participants: List[str]
    difficulty: str
    total_rounds: int
    display_names: Dict[str, str] = field(default_factory=dict)
    level: int = 1
    scores: Dict[str, float] = field(default_factory=dict)
    responses: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    asked_question_ids: Set[str] = field(default_factory=set)
    current_question: Optional[Question] = None
    round_count: int = 0
    started_at: Optional[float] = None
    initialized: bool = False
    accepting_answers: bool = False
    status: RoomStatus = RoomStatus.CREATED
    end_reason: Optional[str] = None
    # The single outstanding timer and the generation stamped on its message
    timer: Any = None
    timer_generation: int = 0
    session: Any = None

    def to_dict(self) -> dict:
        return {
            'roomId': self.id,
            'participants': list(self.participants),
            'displayNames': dict(self.display_names),
            'difficulty': self.difficulty,
            'level': self.level,
            'scores': dict(self.scores),
            'roundCount': self.round_count,
            'totalRounds': self.total_rounds,
            'status': self.status.value,
            'startedAt': self.started_at,
        }
