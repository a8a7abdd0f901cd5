"""
Error taxonomy for duel operations.

Every error carries the HTTP status the API layer answers with and a message
that is safe to show to the user.
"""


class DuelError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DuelError):
    status_code = 400


class NotFound(DuelError):
    status_code = 404


class InvalidTransition(DuelError):
    status_code = 409


class Forbidden(DuelError):
    status_code = 403


class AlreadyGenerated(DuelError):
    """Problems were already generated; the service answers with the stored set."""
    status_code = 409


class NotParticipant(DuelError):
    status_code = 400


class UpstreamError(DuelError):
    """The external judge was unreachable or answered with a non-OK result."""
    status_code = 502


class UnknownHandle(UpstreamError):
    status_code = 404


class NoCandidates(DuelError):
    status_code = 404
