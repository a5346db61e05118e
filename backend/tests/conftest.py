import os
import sys
import random
import pytest

# Ensure the backend root (containing the `duel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from duel import create_app, db, socketio
from duel.models import Player


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    QUESTION_BANK_PATH = os.path.join(CURRENT_DIR, 'data', 'questions.json')
    PRELOAD_QUESTIONS = False
    TOTAL_ROUNDS = 10
    ROUND_DURATION_SEC = 60
    SETTLE_DELAY_SEC = 3
    MATCH_EXPIRY_SEC = 300
    BASE_RATING = 1000


class RecordingTransport:
    """Collects broadcasts instead of sending them."""

    def __init__(self, room_id=None):
        self.room_id = room_id
        self.events = []

    def broadcast(self, event, payload):
        self.events.append((event, payload))

    def named(self, event):
        return [payload for name, payload in self.events if name == event]

    def last(self, event):
        found = self.named(event)
        return found[-1] if found else None


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import duel.models  # noqa: F401
        db.create_all()
        yield application
        application.extensions['match_runtime'].registry.shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def runtime(flask_app):
    return flask_app.extensions['match_runtime']


@pytest.fixture()
def scheduler(runtime):
    return runtime.scheduler


@pytest.fixture()
def players(flask_app):
    alice = Player(username='alice')
    bob = Player(username='bob')
    db.session.add_all([alice, bob])
    db.session.commit()
    return alice, bob


@pytest.fixture()
def make_session(runtime):
    """Open a room for two players with a recording transport attached."""

    def _make(player_a, player_b, difficulty='easy', seed=7, **kwargs):
        a, b = str(player_a.id), str(player_b.id)
        room_id = runtime.registry.create(
            [a, b], difficulty, display_names={a: player_a.username, b: player_b.username})
        room = runtime.registry.get(room_id)
        session = runtime.new_session(room, RecordingTransport(room_id), rng=random.Random(seed), **kwargs)
        runtime.registry.attach(room_id, session)
        return session

    return _make


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
