from typing import Optional


class IntegrationError(Exception):
    """Base class for errors that map onto an ``{"error": ...}`` response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(IntegrationError):
    status_code = 400


class AuthExpired(IntegrationError):
    """Refresh is impossible or was rejected; the user must reconnect."""

    status_code = 401

    def __init__(self, message: str = "Google Calendar authorization expired, reconnect required"):
        super().__init__(message)


class ProviderError(IntegrationError):
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (status {self.status})"


class NotFoundLocal(IntegrationError):
    status_code = 404


class ConfigurationError(IntegrationError):
    status_code = 500
