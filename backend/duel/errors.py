"""Error taxonomy shared by the HTTP routes, socket handlers and room actors."""


class DuelError(Exception):
    """Base class for every error raised by the duel service."""

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message


class InvalidRequest(DuelError):
    """Malformed challenge input. Raised before any room exists."""


class NotFound(DuelError):
    """Unknown player or room."""


class ExhaustedPool(DuelError):
    """No question left for the room's difficulty."""


class PersistenceError(DuelError):
    """A player profile could not be saved."""
