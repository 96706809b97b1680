from __future__ import annotations


class OOBError(Exception):
    """Base class for every error raised by the OOB client."""


class RegistrationError(OOBError):
    pass


class AuthenticationError(OOBError):
    """The collaborator server rejected our token/secret (HTTP 401 on poll)."""


class PollingError(OOBError):
    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(OOBError):
    """An interaction item could not be decrypted or parsed."""


class DeregistrationError(OOBError):
    pass


class StateError(OOBError):
    """Invalid client state transition (double start, close while polling, ...)."""


class ConfigurationError(OOBError, ValueError):
    pass
