"""
Error taxonomy for the riddle game.

Every error carries the HTTP status and the stable ``error`` code that the
API layer puts into its ``{error, message}`` response body.
"""


class RiddleGameError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(RiddleGameError):
    """Missing or malformed request input."""
    status_code = 400
    error = "validation_error"


class HintOrderError(ValidationError):
    """A hint was requested out of order or beyond the last one."""
    error = "hint_order"


class NotFound(RiddleGameError):
    status_code = 404
    error = "not_found"


class GenerationUnavailable(RiddleGameError):
    """The riddle provider is rate limited, unreachable or returned garbage."""
    status_code = 503
    error = "generation_unavailable"

    def __init__(self, message: str = "Riddle generation is temporarily unavailable, please try again shortly"):
        super().__init__(message)


class MalformedProviderResponse(GenerationUnavailable):
    error = "malformed_provider_response"


class PersistenceError(RiddleGameError):
    status_code = 500
    error = "persistence_error"

    def __init__(self, message: str = "Failed to access game data"):
        super().__init__(message)
