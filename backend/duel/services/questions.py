import json
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from duel.models import DIFFICULTIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Question:
    id: str
    difficulty: str
    level: int
    prompt: str
    answer: str
    input1: str = ''
    input2: str = ''
    symbols: FrozenSet[str] = field(default_factory=frozenset)
    valid: str = ''
    combo: str = ''
    final_level: int = 1

    def public_dict(self) -> dict:
        """Serialize for clients; the answer is never included."""
        return {
            'id': self.id,
            'difficulty': self.difficulty,
            'level': self.level,
            'prompt': self.prompt,
            'input1': self.input1,
            'input2': self.input2,
            'symbols': sorted(self.symbols),
            'valid': self.valid,
            'combo': self.combo,
            'finalLevel': self.final_level,
        }


def _text(value) -> str:
    return '' if value is None else str(value).strip()


def _parse_level(record: dict) -> Tuple[str, Optional[int]]:
    difficulty = _text(record.get('difficulty')).lower()
    level = record.get('level')
    if not difficulty or level in (None, ''):
        # Combined column such as "Easy 3"
        parts = _text(record.get('question_level')).split()
        if len(parts) >= 2:
            difficulty = difficulty or parts[0].lower()
            level = parts[1] if level in (None, '') else level
    try:
        return difficulty, int(level)
    except (TypeError, ValueError):
        return difficulty, None


def _parse_symbols(raw) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    if isinstance(raw, (list, tuple, set)):
        return frozenset(_text(s) for s in raw if _text(s))
    return frozenset(s for s in re.split(r'[,\s]+', _text(raw)) if s)


def question_from_record(record: dict, index: int = 0) -> Optional[Question]:
    difficulty, level = _parse_level(record)
    if difficulty not in DIFFICULTIES or not level:
        logger.warning(f"[question-skip] row={index} invalid level {record.get('question_level') or (difficulty, level)!r}")
        return None
    key = _text(record.get('id') or record.get('key'))
    if not key:
        logger.warning(f"[question-skip] row={index} missing key")
        return None
    try:
        final_level = int(record.get('final_level') or 1)
    except (TypeError, ValueError):
        final_level = 1
    return Question(
        id=key,
        difficulty=difficulty,
        level=level,
        prompt=_text(record.get('prompt')),
        answer=_text(record.get('answer')),
        input1=_text(record.get('input1')),
        input2=_text(record.get('input2')),
        symbols=_parse_symbols(record.get('symbols') or record.get('symbol')),
        valid=_text(record.get('valid')),
        combo=_text(record.get('combo')),
        final_level=final_level,
    )


class QuestionBank:
    """Read-only, lazily loaded pool of questions keyed by difficulty and level.

    The pool is loaded at most once per process; concurrent first access from
    several rooms waits on the same load instead of repeating it.
    """

    def __init__(self, path: Optional[str] = None, records: Optional[List[dict]] = None):
        self._path = path
        self._records = records
        self._lock = threading.Lock()
        self._questions: Optional[List[Question]] = None
        self._by_id: Dict[str, Question] = {}
        self._by_level: Dict[Tuple[str, int], List[Question]] = {}
        self._by_difficulty: Dict[str, List[Question]] = {}

    def _read_records(self) -> List[dict]:
        if self._records is not None:
            return list(self._records)
        with open(self._path, encoding='utf-8') as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get('questions', [])
        return data

    def _ensure_loaded(self) -> List[Question]:
        if self._questions is not None:
            return self._questions
        with self._lock:
            if self._questions is None:
                rows = self._read_records()
                loaded = []
                for index, row in enumerate(rows):
                    question = question_from_record(row, index)
                    if question is not None:
                        loaded.append(question)
                for question in loaded:
                    self._by_id[question.id] = question
                    self._by_level.setdefault((question.difficulty, question.level), []).append(question)
                    self._by_difficulty.setdefault(question.difficulty, []).append(question)
                counts = {d: len(qs) for d, qs in self._by_difficulty.items()}
                logger.info(f"[question-load] rows={len(rows)} loaded={len(loaded)} by_difficulty={counts}")
                self._questions = loaded
        return self._questions

    def all(self) -> List[Question]:
        return list(self._ensure_loaded())

    def query(self, difficulty: str, level: Optional[int] = None) -> List[Question]:
        self._ensure_loaded()
        if level is None:
            return list(self._by_difficulty.get(difficulty, []))
        return list(self._by_level.get((difficulty, level), []))

    def get(self, question_id: str) -> Optional[Question]:
        self._ensure_loaded()
        return self._by_id.get(str(question_id))

    def levels(self, difficulty: str) -> List[int]:
        return sorted({q.level for q in self.query(difficulty)})
