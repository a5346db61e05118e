"""Per-room state machine.

A MatchSession owns its Room. Socket events and timers never touch the room
directly; they ``tell`` the session a message, and messages are handled one at
a time in arrival order by whichever thread holds the session lock.
"""

import random
import threading
import time
from collections import deque
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from flask import has_app_context

from duel.errors import ExhaustedPool, NotFound, PersistenceError
from duel.services.match.levels import level_for_score
from duel.services.match.messages import (
    TIMER_MESSAGES,
    AnswerSubmitted,
    Connected,
    Disconnected,
    MatchAborted,
    MatchExpired,
    MatchMessage,
    RoundTimerFired,
    SettleDelayElapsed,
)
from duel.services.match.rating import apply_delta, compute_deltas
from duel.services.match.room import Room, RoomStatus
from duel.services.questions import Question

MAX_TIME_BONUS = 0.5


@dataclass(frozen=True)
class MatchSettings:
    total_rounds: int = 10
    round_duration_sec: float = 60
    settle_delay_sec: float = 3
    expiry_sec: float = 300
    base_rating: int = 1000

    @classmethod
    def from_config(cls, config):
        return cls(
            total_rounds=int(config.get('TOTAL_ROUNDS', 10)),
            round_duration_sec=float(config.get('ROUND_DURATION_SEC', 60)),
            settle_delay_sec=float(config.get('SETTLE_DELAY_SEC', 3)),
            expiry_sec=float(config.get('MATCH_EXPIRY_SEC', 300)),
            base_rating=int(config.get('BASE_RATING', 1000)),
        )


def normalize_answer(value) -> str:
    return '' if value is None else str(value).strip().lower()


def points_for(correct: bool, time_left, round_duration: float) -> float:
    """1 point for a correct answer plus up to half a point for speed."""
    if not correct:
        return 0.0
    try:
        remaining = float(time_left or 0)
    except (TypeError, ValueError):
        remaining = 0.0
    remaining = max(0.0, min(remaining, round_duration))
    bonus = min(MAX_TIME_BONUS, (remaining / round_duration) * MAX_TIME_BONUS) if round_duration else 0.0
    return 1.0 + bonus


class MatchSession:

    def __init__(self, room: Room, *, transport, registry, questions, players, settings: MatchSettings,
                 app, rng: Optional[random.Random] = None, clock: Callable[[], float] = time.time):
        self.room = room
        self.transport = transport
        self._registry = registry
        self._questions = questions
        self._players = players
        self._settings = settings
        self._app = app
        self._rng = rng or random.Random()
        self._clock = clock
        self._mailbox = deque()
        self._lock = threading.Lock()
        # participant id -> endpoint id currently representing them
        self.endpoints: Dict[str, str] = {}
        self.end_count = 0

    @property
    def log(self):
        return self._app.logger

    # ---- actor plumbing ----

    def tell(self, message: MatchMessage) -> None:
        """Queue ``message`` and drain the mailbox unless another thread is already draining it."""
        self._mailbox.append(message)
        while self._mailbox and self._lock.acquire(blocking=False):
            try:
                with self._context():
                    while self._mailbox:
                        self._dispatch(self._mailbox.popleft())
            finally:
                self._lock.release()

    def _context(self):
        if has_app_context():
            return nullcontext()
        return self._app.app_context()

    def _dispatch(self, message: MatchMessage) -> None:
        room = self.room
        if room.status == RoomStatus.ENDED:
            return
        if isinstance(message, TIMER_MESSAGES) and message.generation != room.timer_generation:
            self.log.info(f"[timer-abort] room={room.id} stale {message!r} current={room.timer_generation}")
            return
        try:
            if isinstance(message, Connected):
                self._on_connected(message)
            elif isinstance(message, Disconnected):
                self._on_disconnected(message)
            elif isinstance(message, AnswerSubmitted):
                self._on_answer(message)
            elif isinstance(message, RoundTimerFired):
                self._on_round_timeout()
            elif isinstance(message, SettleDelayElapsed):
                self._on_settled()
            elif isinstance(message, MatchExpired):
                self.log.info(f"[match-expired] room={room.id} status={room.status.value}")
                self._finish('timeout')
            elif isinstance(message, MatchAborted):
                self._finish(message.reason, settle_ratings=False)
            else:
                raise TypeError(f'Unsupported message {message!r}')
        except Exception:
            self.log.exception(f"[room-error] room={room.id} while handling {message!r}")
            self._finish('error')

    # ---- message handlers ----

    def _on_connected(self, msg: Connected) -> None:
        room = self.room
        if msg.player_id not in room.participants:
            self.log.warning(f"[join-reject] room={room.id} player={msg.player_id} not a participant")
            return
        self.endpoints[msg.player_id] = msg.endpoint_id
        self.log.info(f"[join] room={room.id} player={msg.player_id} connected={len(self.endpoints)}/{len(room.participants)}")
        if room.status == RoomStatus.AWAITING_PLAYERS and len(self.endpoints) == len(room.participants):
            self._start_match()

    def _on_disconnected(self, msg: Disconnected) -> None:
        room = self.room
        current = self.endpoints.get(msg.player_id)
        if current is None or (msg.endpoint_id is not None and current != msg.endpoint_id):
            # Stale endpoint; the player already reconnected elsewhere
            return
        del self.endpoints[msg.player_id]
        self.log.info(f"[leave] room={room.id} player={msg.player_id} round={room.round_count}")
        if room.status == RoomStatus.IN_PROGRESS and room.round_count < room.total_rounds:
            self._finish('player_disconnect')

    def _on_answer(self, msg: AnswerSubmitted) -> None:
        room = self.room
        if not room.accepting_answers or msg.player_id not in room.participants:
            return
        if msg.player_id in room.responses:
            self.log.info(f"[answer-duplicate] room={room.id} player={msg.player_id} round={room.round_count + 1}")
            return
        question = room.current_question
        correct = normalize_answer(msg.answer) == normalize_answer(question.answer)
        points = points_for(correct, msg.time_left, self._settings.round_duration_sec)
        room.responses[msg.player_id] = {'answer': msg.answer, 'correct': correct, 'points': points}
        room.scores[msg.player_id] = room.scores.get(msg.player_id, 0.0) + points
        if len(room.responses) == len(room.participants):
            self._complete_round()

    def _on_round_timeout(self) -> None:
        room = self.room
        if not room.accepting_answers:
            return
        missing = [p for p in room.participants if p not in room.responses]
        self.log.info(f"[round-timeout] room={room.id} round={room.round_count + 1} unanswered={missing}")
        self._complete_round()

    def _on_settled(self) -> None:
        if self.room.round_count >= self.room.total_rounds:
            self._finish('completed')
        else:
            self._start_round()

    # ---- transitions ----

    def _start_match(self) -> None:
        room = self.room
        self._registry.cancel_timer(room)
        room.scores = {pid: 0.0 for pid in room.participants}
        room.started_at = self._clock()
        room.initialized = True
        room.status = RoomStatus.IN_PROGRESS
        room.level = level_for_score(0)
        self.log.info(f"[match-start] room={room.id} difficulty={room.difficulty} rounds={room.total_rounds}")
        self.transport.broadcast('matchStarted', {
            'timer': self._settings.round_duration_sec,
            'level': room.level,
            'difficulty': room.difficulty,
            'totalQuestions': room.total_rounds,
            'players': dict(room.display_names),
        })
        self._start_round()

    def _pick_question(self) -> Question:
        room = self.room
        pool = [q for q in self._questions.query(room.difficulty, room.level)
                if q.id not in room.asked_question_ids]
        if not pool:
            # Level exhausted; repeats are allowed from here on
            pool = self._questions.query(room.difficulty)
        if not pool:
            raise ExhaustedPool(f'No questions for difficulty {room.difficulty}')
        return self._rng.choice(pool)

    def _start_round(self) -> None:
        room = self.room
        room.level = level_for_score(min(room.scores.values()))
        try:
            question = self._pick_question()
        except ExhaustedPool as exc:
            self.log.warning(f"[round-abort] room={room.id} {exc.message}")
            self._finish('no_questions')
            return
        room.asked_question_ids.add(question.id)
        room.current_question = question
        room.responses = {}
        room.accepting_answers = True
        number = room.round_count + 1
        self.log.info(f"[round-start] room={room.id} round={number} level={room.level} question={question.id}")
        self.transport.broadcast('newQuestion', {
            'question': question.public_dict(),
            'level': room.level,
            'questionNumber': number,
            'totalQuestions': room.total_rounds,
        })
        self._registry.arm_timer(room, self._settings.round_duration_sec, 'round', RoundTimerFired)

    def _complete_round(self) -> None:
        room = self.room
        room.accepting_answers = False
        self._registry.cancel_timer(room)
        for pid in room.participants:
            room.responses.setdefault(pid, {'answer': None, 'correct': False, 'points': 0.0})
        room.round_count += 1
        self.log.info(f"[round-scored] room={room.id} round={room.round_count} scores={room.scores}")
        self.transport.broadcast('roundResult', {
            'scores': dict(room.scores),
            'responses': {pid: dict(r) for pid, r in room.responses.items()},
            'correctAnswer': room.current_question.answer if room.current_question else None,
            'questionNumber': room.round_count,
        })
        self._registry.arm_timer(room, self._settings.settle_delay_sec, 'settle', SettleDelayElapsed)

    # ---- termination ----

    def winner(self) -> Optional[str]:
        a, b = self.room.participants
        score_a, score_b = self.room.scores.get(a, 0.0), self.room.scores.get(b, 0.0)
        if score_a > score_b:
            return a
        if score_b > score_a:
            return b
        return None

    def _settle_ratings(self):
        """Apply rating deltas to both profiles and persist them together."""
        room = self.room
        a, b = room.participants
        player_a = self._players.find_by_id(a)
        player_b = self._players.find_by_id(b)
        record_a = player_a.ensure_rating(room.difficulty, self._settings.base_rating)
        record_b = player_b.ensure_rating(room.difficulty, self._settings.base_rating)
        old_a = self._settings.base_rating if record_a.rating is None else record_a.rating
        old_b = self._settings.base_rating if record_b.rating is None else record_b.rating
        delta_a, delta_b = compute_deltas(old_a, old_b, room.scores.get(a, 0.0), room.scores.get(b, 0.0))
        record_a.rating = apply_delta(old_a, delta_a)
        record_b.rating = apply_delta(old_b, delta_b)
        self._players.save(player_a, player_b)
        return {a: delta_a, b: delta_b}, {a: record_a.rating, b: record_b.rating}

    def _finish(self, reason: str, settle_ratings: bool = True) -> None:
        """Single termination path: ratings, final broadcast, room removal."""
        room = self.room
        if room.status == RoomStatus.ENDED:
            return
        room.status = RoomStatus.ENDED
        room.accepting_answers = False
        self.end_count += 1
        self._registry.cancel_timer(room)
        deltas, new_ratings = {}, {}
        try:
            if settle_ratings:
                deltas, new_ratings = self._settle_ratings()
        except NotFound as exc:
            self.log.warning(f"[match-end] room={room.id} ratings skipped: {exc.message}")
            reason = 'player_not_found'
        except PersistenceError as exc:
            self.log.error(f"[match-end] room={room.id} ratings not saved: {exc.message}")
            deltas, new_ratings = {}, {}
            reason = 'error'
        except Exception:
            self.log.exception(f"[match-end] room={room.id} rating update failed")
            deltas, new_ratings = {}, {}
            reason = 'error'
        room.end_reason = reason
        duration = (self._clock() - room.started_at) if room.started_at is not None else 0
        self.log.info(f"[match-end] room={room.id} reason={reason} scores={room.scores} deltas={deltas}")
        try:
            self.transport.broadcast('matchEnded', {
                'reason': reason,
                'scores': {pid: room.scores.get(pid, 0.0) for pid in room.participants},
                'winner': self.winner(),
                'ratingDeltas': deltas,
                'newRatings': new_ratings,
                'matchDuration': duration,
            })
        finally:
            self._registry.remove(room.id, reason)
