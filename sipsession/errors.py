"""Session error taxonomy."""

from typing import Optional


class SessionError(Exception):
    """Base class for session errors."""
    pass


class ValidationError(SessionError):
    """A required field was empty."""
    pass


class InvalidCredentials(ValidationError):
    """Username, domain or password missing."""
    pass


class InvalidTarget(ValidationError):
    """Callee address missing."""
    pass


class NotRegistered(SessionError):
    """Action attempted out of sequence."""
    pass


class CallAlreadyActive(NotRegistered):
    """A call is already dialing, ringing or connected."""
    pass


class NoActiveCall(NotRegistered):
    """Hangup requested while no call is active."""
    pass


class ProviderUnavailable(SessionError):
    """The SIP provider capability is missing."""
    pass


class ProviderError(SessionError):
    """The provider rejected a request."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "unknown error")
        self.message = message


class RegistrationFailure(SessionError):
    """Registration failed, reported asynchronously by the provider."""
    pass


class CallFailure(SessionError):
    """Call failed, reported asynchronously by the provider."""
    pass


class DispatcherError(SessionError):
    """Event dispatcher lifecycle misuse."""
    pass


class UnknownEventError(SessionError):
    """Provider emitted an event kind we do not know."""
    pass
