"""
Error taxonomy shared by the grading services.

Services raise these; the HTTP layer turns them into responses using
``status_code``.
"""


class GradingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GradingError):
    """Malformed input: bad score range, invalid percentage, bad question."""
    status_code = 400


class NotFoundError(GradingError):
    status_code = 404


class AuthorizationError(GradingError):
    status_code = 403


class ConflictError(GradingError):
    """Operation clashes with current state (active attempt, attempt limit)."""
    status_code = 409


class ExpiredError(GradingError):
    status_code = 410


class TransientStoreError(GradingError):
    """Store failure while applying a derived side effect."""
    status_code = 503
