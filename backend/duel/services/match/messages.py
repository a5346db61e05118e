"""Messages accepted by a room's actor.

Every external trigger (socket event, timer) reaches a room as one of these.
Timer messages carry the generation of the timer that produced them so a
message from a cancelled or replaced timer is dropped.
"""

from dataclasses import dataclass
from typing import Any, Optional


class MatchMessage:
    pass


@dataclass(frozen=True)
class Connected(MatchMessage):
    player_id: str
    endpoint_id: str


@dataclass(frozen=True)
class Disconnected(MatchMessage):
    player_id: str
    endpoint_id: Optional[str] = None


@dataclass(frozen=True)
class AnswerSubmitted(MatchMessage):
    player_id: str
    answer: Any
    time_left: Any = 0


@dataclass(frozen=True)
class RoundTimerFired(MatchMessage):
    generation: int


@dataclass(frozen=True)
class SettleDelayElapsed(MatchMessage):
    generation: int


@dataclass(frozen=True)
class MatchExpired(MatchMessage):
    generation: int


TIMER_MESSAGES = (RoundTimerFired, SettleDelayElapsed, MatchExpired)


@dataclass(frozen=True)
class MatchAborted(MatchMessage):
    """The service is ending the match; no ratings change."""
    reason: str
