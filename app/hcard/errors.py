"""
Error taxonomy shared by services and blueprints.

Services raise these; the app-level error handler in ``create_app()`` renders them
as JSON. Token failures all render the same body so callers cannot tell an
expired link from a forged one.
"""
from __future__ import annotations


class HcardError(RuntimeError):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def public_body(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class ConfigurationError(HcardError):
    """Missing or invalid startup configuration. Raised by create_app(), never per request."""

    error_code = "configuration_error"


class Unauthenticated(HcardError):
    status_code = 401
    error_code = "unauthenticated"


class Unauthorized(HcardError):
    status_code = 403
    error_code = "unauthorized"


class NotFound(HcardError):
    status_code = 404
    error_code = "not_found"


class TokenError(HcardError):
    status_code = 403
    error_code = "invalid_or_expired"

    def public_body(self) -> dict:
        return {"error": self.error_code, "message": "Link is invalid or has expired."}


class Expired(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class MalformedToken(InvalidSignature):
    pass


class IntegrityViolation(HcardError):
    status_code = 409
    error_code = "integrity_violation"


class TerminalStateViolation(HcardError):
    status_code = 409
    error_code = "terminal_state"
