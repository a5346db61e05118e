"""Real-time two-player matches: rooms, timers, scoring and ratings."""

from flask import current_app

from duel.services.match.registry import RoomRegistry
from duel.services.match.scheduler import BackgroundScheduler, DeferredScheduler
from duel.services.match.session import MatchSession, MatchSettings
from duel.services.players import PlayerStore
from duel.services.questions import QuestionBank


class MatchRuntime:
    """Everything the match layer shares across rooms for the life of the process."""

    def __init__(self, app, *, registry, questions, players, scheduler, settings):
        self.app = app
        self.registry = registry
        self.questions = questions
        self.players = players
        self.scheduler = scheduler
        self.settings = settings

    @classmethod
    def from_app(cls, app, socketio):
        config = app.config
        settings = MatchSettings.from_config(config)
        if config.get('TESTING') and not config.get('ENABLE_SCHEDULER_IN_TESTS'):
            scheduler = DeferredScheduler()
        else:
            scheduler = BackgroundScheduler(socketio, heartbeat_sec=int(config.get('TIMER_HEARTBEAT_SEC', 0)))
        registry = RoomRegistry(scheduler, expiry_sec=settings.expiry_sec, total_rounds=settings.total_rounds)
        questions = QuestionBank(path=config.get('QUESTION_BANK_PATH'))
        return cls(app, registry=registry, questions=questions, players=PlayerStore(),
                   scheduler=scheduler, settings=settings)

    def new_session(self, room, transport, **kwargs) -> MatchSession:
        return MatchSession(
            room,
            transport=transport,
            registry=self.registry,
            questions=self.questions,
            players=self.players,
            settings=self.settings,
            app=self.app,
            **kwargs,
        )


def get_runtime() -> MatchRuntime:
    return current_app.extensions['match_runtime']
