"""
Failure taxonomy. Every error carries the HTTP status it maps to so handlers
can convert it to an {error} response without a lookup table.

This is a leaf module with no internal dependencies.
"""


class AgentConnectError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationFailure(AgentConnectError):
    status_code = 400


class AuthFailure(AgentConnectError):
    status_code = 401


class NotFoundFailure(AgentConnectError):
    status_code = 404


class ConflictFailure(AgentConnectError):
    status_code = 409


class PayloadTooLarge(AgentConnectError):
    status_code = 413


class UnsupportedMediaType(AgentConnectError):
    status_code = 415


class RateLimitFailure(AgentConnectError):
    status_code = 429

    def __init__(self, message: str, retry_after_ms: int):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> dict:
        return {"error": self.message, "retry_after_ms": self.retry_after_ms}


class DecryptionFailure(AgentConnectError):
    """Tampered payload or wrong key. The message never says which."""
    status_code = 400

    def __init__(self, message: str = "Failed to decrypt message"):
        super().__init__(message)

