"""
Bracket engine error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Services raise these; routes never build HTTPException for
engine failures themselves (see app.main exception handler).
"""
from typing import Optional


class BracketEngineError(Exception):
    status_code = 500
    code = "BRACKET_ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    @property
    def detail(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(BracketEngineError):
    """Bad score/format input. Never partially applied."""

    status_code = 422
    code = "VALIDATION_ERROR"


class InvalidScore(ValidationError):
    code = "INVALID_SCORE"


class NotReadyError(BracketEngineError):
    """Slots unresolved. Retryable once upstream completes."""

    status_code = 409
    code = "MATCH_NOT_READY"


class ConflictError(BracketEngineError):
    """Concurrent/duplicate write, or a correction after downstream progressed."""

    status_code = 409
    code = "CONFLICT"


class AlreadyCompleted(ConflictError):
    code = "ALREADY_COMPLETED"


class AlreadyBuilt(ConflictError):
    code = "ALREADY_BUILT"


class ConfigurationError(BracketEngineError):
    """Bracket kind/size mismatch at build time. The bracket is not created."""

    status_code = 400
    code = "CONFIGURATION_ERROR"


class InsufficientParticipants(ConfigurationError):
    code = "INSUFFICIENT_PARTICIPANTS"


class NotFoundError(BracketEngineError):
    status_code = 404
    code = "NOT_FOUND"


class BracketIntegrityError(BracketEngineError):
    """Propagation target missing or wiring inconsistent. Aborts the transaction."""

    status_code = 500
    code = "BRACKET_INTEGRITY"
