from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Process-wide match state: rooms, timers, question cache. Never persisted.
    from duel.services.match import MatchRuntime
    runtime = MatchRuntime.from_app(flask_app, socketio)
    flask_app.extensions['match_runtime'] = runtime
    if flask_app.config.get('PRELOAD_QUESTIONS') and not flask_app.config.get('TESTING'):
        try:
            count = len(runtime.questions.all())
            flask_app.logger.info(f"[startup] preloaded {count} questions")
        except OSError as exc:
            flask_app.logger.warning(f"[startup] question bank not loaded: {exc}")

    @flask_app.route('/')
    def index():
        return jsonify({'message': 'Welcome to the trivia duel server!'})

    from duel.api.players import players
    flask_app.register_blueprint(players, url_prefix='/api/players')

    from duel.api.match import match
    flask_app.register_blueprint(match, url_prefix='/api/match')

    from duel.api.questions import questions
    flask_app.register_blueprint(questions, url_prefix='/api/question')

    from duel.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from duel.models import Player
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed players
            for name in ['player1', 'player2', 'player3']:
                db.session.add(Player(username=name))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
