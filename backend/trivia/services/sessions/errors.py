"""Recoverable errors raised by the session services.

Each error maps to one user-facing message on the client, so the payload
carries a stable ``error`` code plus whatever detail the client needs.
"""


class SessionError(Exception):
    code = 'session_error'
    status_code = 400

    def __init__(self, message=None, **detail):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.detail = detail

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        payload.update(self.detail)
        return payload


class InvalidSessionState(SessionError):
    code = 'invalid_session_state'
    status_code = 409

    def __init__(self, message=None, status=None, action=None):
        super().__init__(message or f'Cannot {action or "do that"} while session is {status}',
                         status=status, action=action)


class ValidationFailed(SessionError):
    code = 'validation_failed'
    status_code = 400

    def __init__(self, field, message):
        super().__init__(message, field=field)
        self.field = field


class DuplicateAnswer(SessionError):
    code = 'duplicate_answer'
    status_code = 409


class AnswerWindowClosed(SessionError):
    code = 'answer_window_closed'
    status_code = 409


class TerritoryAlreadyClaimed(SessionError):
    code = 'territory_already_claimed'
    status_code = 409


class SessionNotFound(SessionError):
    code = 'session_not_found'
    status_code = 404


class PersistenceError(SessionError):
    """Storage failed; nothing from the attempted write was kept."""
    code = 'persistence_error'
    status_code = 503
