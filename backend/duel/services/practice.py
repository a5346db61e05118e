"""Solo practice: rating-based starting level and per-answer score deltas."""

import random
from typing import List, Optional

from duel.errors import ExhaustedPool, InvalidRequest, NotFound
from duel.models import DIFFICULTIES
from duel.services.match.levels import level_for_score
from duel.services.match.session import normalize_answer

# (rating ceiling, highest level that still counts as "easy for you")
EASY_LEVEL_CEILINGS = ((400, 3), (800, 4), (1200, 5), (1600, 6), (2000, 7))
EASY_LEVEL_CEILING_TOP = 8


def desired_start_level(difficulty: str, rating: float) -> int:
    if rating > 2000:
        return {'easy': 2, 'medium': 4}.get(difficulty, 5)
    if rating > 1600:
        return {'easy': 2, 'medium': 3}.get(difficulty, 4)
    if rating > 1200:
        return 2 if difficulty == 'easy' else 3
    if rating > 800:
        return 2
    return 1


def start_level(difficulty: str, rating: float, available: List[int]) -> int:
    """Highest available level not above the desired one, else the lowest available."""
    desired = desired_start_level(difficulty, rating)
    eligible = [lvl for lvl in available if lvl <= desired]
    return eligible[-1] if eligible else available[0]


def score_delta(rating: float, level: int, correct: bool) -> int:
    if not correct:
        return -1
    ceiling = EASY_LEVEL_CEILING_TOP
    for max_rating, easy_ceiling in EASY_LEVEL_CEILINGS:
        if rating <= max_rating:
            ceiling = easy_ceiling
            break
    return 2 if level <= ceiling else 1


def _parse_difficulty(value) -> str:
    difficulty = str(value or '').strip().lower()
    if difficulty not in DIFFICULTIES:
        raise InvalidRequest('Provide difficulty=(easy|medium|hard) and numeric playerRating')
    return difficulty


def _parse_number(value, message):
    if isinstance(value, bool):
        raise InvalidRequest(message)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidRequest(message)


class PracticeService:

    def __init__(self, questions, rng: Optional[random.Random] = None):
        self._questions = questions
        self._rng = rng or random.Random()

    def first_question(self, difficulty, player_rating) -> dict:
        difficulty = _parse_difficulty(difficulty)
        rating = _parse_number(player_rating, 'Provide difficulty=(easy|medium|hard) and numeric playerRating')
        available = self._questions.levels(difficulty)
        if not available:
            raise NotFound(f'No questions available for difficulty "{difficulty}"')
        level = start_level(difficulty, rating, available)
        pool = self._questions.query(difficulty, level)
        if not pool:
            raise NotFound(f'No questions available for difficulty "{difficulty}" at level {level}')
        question = self._rng.choice(pool)
        return {'question': question.public_dict(), 'level': level, 'availableLevels': available}

    def submit_answer(self, question_id, given_answer, player_rating, current_score) -> dict:
        message = 'Missing or invalid fields: playerRating, currentScore, or questionId'
        rating = _parse_number(player_rating, message)
        score = _parse_number(current_score, message)
        if question_id in (None, ''):
            raise InvalidRequest(message)
        question = self._questions.get(question_id)
        if question is None:
            raise NotFound(f'Question {question_id} not found')

        correct = normalize_answer(given_answer) == normalize_answer(question.answer)
        delta = score_delta(rating, question.level, correct)
        updated = max(0.0, score + delta)
        allowed = level_for_score(updated)
        pool = [q for q in self._questions.query(question.difficulty) if q.level <= allowed]
        if not pool:
            raise ExhaustedPool('No further questions found for updated score.')
        next_question = self._rng.choice(pool)
        return {
            'isCorrect': correct,
            'correctAnswer': question.answer,
            'oldScore': score,
            'updatedScore': updated,
            'scoreDelta': delta,
            'nextQuestion': next_question.public_dict(),
        }
