import threading

import pytest

from duel import db
from duel.errors import NotFound, PersistenceError
from duel.models import Player
from duel.services.match.messages import (
    AnswerSubmitted,
    Connected,
    Disconnected,
    RoundTimerFired,
)
from duel.services.match.room import RoomStatus
from duel.services.questions import QuestionBank


def _start(session):
    a, b = session.room.participants
    session.tell(Connected(a, 'sid-a'))
    session.tell(Connected(b, 'sid-b'))
    return a, b


def _answer(session, player_id, correct=True, time_left=0):
    answer = session.room.current_question.answer if correct else 'definitely wrong'
    session.tell(AnswerSubmitted(player_id, answer, time_left))


def _rating(player, difficulty='easy'):
    record = db.session.get(Player, player.id).rating_record(difficulty)
    return record.rating if record else None


def test_match_starts_once_both_players_connect(players, make_session, scheduler):
    session = make_session(*players)
    room = session.room
    a, b = room.participants

    session.tell(Connected(a, 'sid-a'))
    assert room.status == RoomStatus.AWAITING_PLAYERS
    assert session.transport.events == []

    session.tell(Connected(b, 'sid-b'))
    assert room.status == RoomStatus.IN_PROGRESS
    assert room.initialized
    assert room.scores == {a: 0.0, b: 0.0}
    assert room.started_at is not None

    names = [name for name, _ in session.transport.events]
    assert names == ['matchStarted', 'newQuestion']
    started = session.transport.last('matchStarted')
    assert started == {
        'timer': 60.0,
        'level': 1,
        'difficulty': 'easy',
        'totalQuestions': 10,
        'players': {a: 'alice', b: 'bob'},
    }
    question = session.transport.last('newQuestion')
    assert 'answer' not in question['question']
    assert question['questionNumber'] == 1
    assert question['totalQuestions'] == 10
    assert question['level'] == 1
    assert room.current_question.id in room.asked_question_ids

    # Expiry timer is replaced by the round timer
    assert scheduler.pending('expiry') == []
    assert len(scheduler.pending('round')) == 1


def test_scoring_with_time_bonus(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)

    _answer(session, a, correct=True, time_left=30)
    _answer(session, b, correct=False, time_left=59)

    room = session.room
    assert room.scores[a] == pytest.approx(1.25)
    assert room.scores[b] == 0
    result = session.transport.last('roundResult')
    assert result['questionNumber'] == 1
    assert result['correctAnswer'] == room.current_question.answer
    assert result['responses'][a]['correct'] is True
    assert result['responses'][a]['points'] == pytest.approx(1.25)
    assert result['responses'][b] == {'answer': 'definitely wrong', 'correct': False, 'points': 0.0}
    assert room.round_count == 1
    assert scheduler.pending('round') == []
    assert len(scheduler.pending('settle')) == 1
    assert scheduler.pending('settle')[0].delay == 3


def test_time_bonus_is_capped_and_ignores_bad_values(players, make_session):
    session = make_session(*players)
    a, b = _start(session)
    _answer(session, a, correct=True, time_left=600)
    _answer(session, b, correct=True, time_left='soon')
    assert session.room.scores[a] == pytest.approx(1.5)
    assert session.room.scores[b] == pytest.approx(1.0)


def test_answers_are_trimmed_and_case_insensitive(runtime, players, make_session):
    runtime.questions = QuestionBank(records=[
        {'key': 'cap-1', 'question_level': 'Easy 1', 'prompt': 'Capital of France?', 'answer': 'Paris'},
    ])
    session = make_session(*players)
    a, b = _start(session)
    session.tell(AnswerSubmitted(a, '  pARIS ', 0))
    session.tell(AnswerSubmitted(b, 'Lyon', 0))
    assert session.room.scores == {a: 1.0, b: 0.0}


def test_duplicate_answer_does_not_change_score(players, make_session):
    session = make_session(*players)
    a, b = _start(session)

    _answer(session, a, correct=False)
    _answer(session, a, correct=True, time_left=60)
    assert session.room.scores[a] == 0
    assert session.room.responses[a]['correct'] is False

    _answer(session, b, correct=True)
    assert session.room.round_count == 1
    assert session.room.scores[b] == 1.0


def test_answers_from_strangers_or_between_rounds_are_ignored(players, make_session):
    session = make_session(*players)
    a, b = _start(session)
    session.tell(AnswerSubmitted('999', 'x', 10))
    assert '999' not in session.room.scores

    _answer(session, a)
    _answer(session, b)
    # Results are on screen; the next question has not been asked yet
    _answer(session, a)
    assert session.room.scores[a] == 1.0
    assert session.room.round_count == 1


def test_round_timer_scores_silent_player_zero(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)
    _answer(session, a, correct=True)

    assert scheduler.fire('round')

    room = session.room
    assert room.round_count == 1
    assert room.scores == {a: 1.0, b: 0.0}
    result = session.transport.last('roundResult')
    assert result['responses'][b] == {'answer': None, 'correct': False, 'points': 0.0}
    assert len(scheduler.pending('settle')) == 1


def test_stale_round_timer_is_ignored(players, make_session):
    session = make_session(*players)
    a, b = _start(session)
    generation = session.room.timer_generation
    _answer(session, a)
    _answer(session, b)
    session.tell(RoundTimerFired(generation))
    assert session.room.round_count == 1
    assert len(session.transport.named('roundResult')) == 1


def test_next_round_waits_for_settle_delay(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)
    _answer(session, a)
    _answer(session, b)
    assert len(session.transport.named('newQuestion')) == 1

    assert scheduler.fire('settle')
    names = [name for name, _ in session.transport.events]
    assert names == ['matchStarted', 'newQuestion', 'roundResult', 'newQuestion']
    assert session.transport.last('newQuestion')['questionNumber'] == 2
    assert session.room.responses == {}


def test_full_match_completes_updates_ratings_and_removes_room(runtime, players, make_session, scheduler):
    alice, bob = players
    session = make_session(alice, bob)
    a, b = _start(session)
    room_id = session.room.id

    for _ in range(10):
        _answer(session, a, correct=True)
        _answer(session, b, correct=False)
        assert scheduler.fire('settle')

    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'completed'
    assert ended['scores'] == {a: 10.0, b: 0.0}
    assert ended['winner'] == a
    # base 16, performance bonus capped at 10
    assert ended['ratingDeltas'] == {a: 26, b: -26}
    assert ended['newRatings'] == {a: 1026, b: 974}
    assert ended['matchDuration'] >= 0

    assert session.room.round_count == 10
    assert session.room.status == RoomStatus.ENDED
    assert session.end_count == 1
    with pytest.raises(NotFound):
        runtime.registry.get(room_id)
    assert scheduler.pending() == []
    assert _rating(alice) == 1026
    assert _rating(bob) == 974
    assert _rating(alice, 'hard') is None


def test_questions_do_not_repeat_while_level_has_unused(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)
    for _ in range(9):
        _answer(session, a, correct=False)
        _answer(session, b, correct=False)
        scheduler.fire('settle')
    asked = [q['question']['id'] for q in session.transport.named('newQuestion')]
    assert len(asked) == 10
    assert len(set(asked)) == 10


def test_level_follows_weaker_player(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)
    # a pulls ahead; b stays at zero so the level stays at 1
    for _ in range(5):
        _answer(session, a, correct=True, time_left=60)
        _answer(session, b, correct=False)
        scheduler.fire('settle')
    assert session.room.level == 1
    assert all(q['level'] == 1 for q in session.transport.named('newQuestion'))


def test_exhausted_level_falls_back_to_whole_difficulty(players, make_session, scheduler):
    session = make_session(*players, difficulty='medium')
    a, b = _start(session)
    for _ in range(3):
        _answer(session, a, correct=False)
        _answer(session, b, correct=False)
        scheduler.fire('settle')
    asked = [q['question']['id'] for q in session.transport.named('newQuestion')]
    assert len(asked) == 4
    assert set(asked) == {'m1-01', 'm1-02'}
    assert session.room.status == RoomStatus.IN_PROGRESS


def test_empty_pool_ends_match_with_no_questions(runtime, players, make_session):
    session = make_session(*players, difficulty='hard')
    room_id = session.room.id
    _start(session)
    names = [name for name, _ in session.transport.events]
    assert names == ['matchStarted', 'matchEnded']
    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'no_questions'
    assert ended['winner'] is None
    assert ended['ratingDeltas'] == {p: 0 for p in session.room.participants}
    assert runtime.registry.find(room_id) is None


def test_disconnect_mid_match_ends_once_with_current_scores(runtime, players, make_session, scheduler):
    alice, bob = players
    session = make_session(alice, bob)
    a, b = _start(session)
    _answer(session, a, correct=True)
    _answer(session, b, correct=False)

    session.tell(Disconnected(b, 'sid-b'))
    session.tell(Disconnected(a, 'sid-a'))
    scheduler.fire('settle')

    ended = session.transport.named('matchEnded')
    assert len(ended) == 1
    assert ended[0]['reason'] == 'player_disconnect'
    assert ended[0]['scores'] == {a: 1.0, b: 0.0}
    # base 16 + floor(2 * 1.0)
    assert ended[0]['ratingDeltas'] == {a: 18, b: -18}
    assert session.end_count == 1
    assert runtime.registry.find(session.room.id) is None
    assert _rating(alice) == 1018
    assert _rating(bob) == 982


def test_stale_endpoint_disconnect_is_ignored(players, make_session):
    session = make_session(*players)
    a, b = _start(session)
    session.tell(Connected(a, 'sid-a2'))
    session.tell(Disconnected(a, 'sid-a'))
    assert session.room.status == RoomStatus.IN_PROGRESS
    session.tell(Disconnected(a, 'sid-a2'))
    assert session.room.status == RoomStatus.ENDED


def test_disconnect_before_start_keeps_room_until_expiry(runtime, players, make_session, scheduler):
    session = make_session(*players)
    a, b = session.room.participants
    session.tell(Connected(a, 'sid-a'))
    session.tell(Disconnected(a, 'sid-a'))
    assert session.room.status == RoomStatus.AWAITING_PLAYERS
    assert session.transport.events == []

    assert scheduler.fire('expiry')
    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'timeout'
    assert ended['matchDuration'] == 0
    assert ended['scores'] == {a: 0.0, b: 0.0}
    assert runtime.registry.find(session.room.id) is None


def test_disconnect_after_last_round_still_completes(players, make_session, scheduler):
    session = make_session(*players)
    a, b = _start(session)
    for round_number in range(10):
        _answer(session, a, correct=False)
        _answer(session, b, correct=True)
        if round_number < 9:
            scheduler.fire('settle')
    session.tell(Disconnected(a, 'sid-a'))
    assert session.transport.named('matchEnded') == []
    scheduler.fire('settle')
    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'completed'
    assert ended['winner'] == b


def test_match_duration_uses_clock(players, make_session, scheduler):
    ticks = iter([100.0, 142.5])
    session = make_session(*players, clock=lambda: next(ticks))
    a, b = _start(session)
    session.tell(Disconnected(a, 'sid-a'))
    assert session.transport.last('matchEnded')['matchDuration'] == pytest.approx(42.5)


def test_missing_profile_ends_with_player_not_found(runtime, players, make_session):
    alice, bob = players
    session = make_session(alice, bob)
    a, b = _start(session)
    db.session.delete(bob)
    db.session.commit()

    session.tell(Disconnected(a, 'sid-a'))
    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'player_not_found'
    assert ended['ratingDeltas'] == {}
    assert ended['newRatings'] == {}
    assert runtime.registry.find(session.room.id) is None


def test_failed_save_ends_with_error_and_still_cleans_up(runtime, players, make_session, monkeypatch):
    alice, bob = players

    def failing_save(*args):
        raise PersistenceError('disk full')

    monkeypatch.setattr(runtime.players, 'save', failing_save)
    session = make_session(alice, bob)
    a, b = _start(session)
    _answer(session, a)
    session.tell(Disconnected(b, 'sid-b'))

    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'error'
    assert ended['newRatings'] == {}
    assert runtime.registry.find(session.room.id) is None


def test_unexpected_error_routes_through_termination(runtime, players, make_session, monkeypatch):
    session = make_session(*players)

    def broken_query(*args, **kwargs):
        raise RuntimeError('bank offline')

    monkeypatch.setattr(runtime.questions, 'query', broken_query)
    _start(session)
    ended = session.transport.last('matchEnded')
    assert ended['reason'] == 'error'
    assert session.end_count == 1
    assert runtime.registry.find(session.room.id) is None


def test_shutdown_ends_live_rooms_with_final_broadcast(runtime, players, make_session):
    waiting = make_session(*players)
    playing = make_session(*players)
    _start(playing)
    _answer(playing, playing.room.participants[0])

    runtime.registry.shutdown()

    for session in (waiting, playing):
        ended = session.transport.named('matchEnded')
        assert len(ended) == 1
        assert ended[0]['reason'] == 'shutdown'
        assert ended[0]['ratingDeltas'] == {}
        assert session.room.status == RoomStatus.ENDED
    assert playing.transport.last('matchEnded')['scores'][playing.room.participants[0]] > 0
    assert len(runtime.registry) == 0
    assert _rating(players[0]) is None


def test_concurrent_answers_and_timer_score_one_round(players, make_session):
    for _ in range(25):
        session = make_session(*players)
        a, b = _start(session)
        room = session.room
        answer = room.current_question.answer
        messages = [
            AnswerSubmitted(a, answer, 30),
            AnswerSubmitted(a, answer, 30),
            AnswerSubmitted(b, 'nope', 30),
            RoundTimerFired(room.timer_generation),
        ]
        barrier = threading.Barrier(len(messages))

        def send(message):
            barrier.wait(1)
            session.tell(message)

        threads = [threading.Thread(target=send, args=(m,)) for m in messages]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(session.transport.named('roundResult')) == 1
        assert room.round_count == 1
        assert room.scores[a] in (0.0, 1.25)
        assert room.scores[b] == 0.0
        assert not room.accepting_answers
