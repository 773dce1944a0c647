"""Pydantic models for session state, provider events and API payloads."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import CallFailure, RegistrationFailure, UnknownEventError

UNKNOWN_ERROR = "unknown error"
UNKNOWN_CALLER = "unknown caller"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class RegistrationState(str, Enum):
    """Registration with the SIP server."""
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"
    REGISTRATION_FAILED = "registration_failed"


class CallState(str, Enum):
    """Lifecycle of the single call a session may hold."""
    IDLE = "idle"
    DIALING = "dialing"
    RINGING = "ringing"  # incoming
    CONNECTED = "connected"
    ENDING = "ending"


class StatusKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Credentials(BaseModel):
    """SIP login credentials, used once to issue a register request."""

    model_config = ConfigDict(frozen=True)

    username: str = Field("", description="SIP username")
    domain: str = Field("", description="SIP domain, e.g. sip.example.com")
    password: str = Field("", repr=False, description="SIP password")

    @property
    def is_complete(self) -> bool:
        return bool(self.username.strip() and self.domain.strip() and self.password)


class CallTarget(BaseModel):
    """Address of the party to call."""

    model_config = ConfigDict(frozen=True)

    callee_address: str = Field("", description="SIP number or user to call")

    @property
    def is_valid(self) -> bool:
        return bool(self.callee_address.strip())


class SessionStatus(BaseModel):
    """Human readable status shown by the presentation layer."""

    model_config = ConfigDict(frozen=True)

    kind: StatusKind
    message: str
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def info(cls, message: str) -> "SessionStatus":
        return cls(kind=StatusKind.INFO, message=message)

    @classmethod
    def success(cls, message: str) -> "SessionStatus":
        return cls(kind=StatusKind.SUCCESS, message=message)

    @classmethod
    def error(cls, message: str) -> "SessionStatus":
        return cls(kind=StatusKind.ERROR, message=message)


class Transition(BaseModel):
    """
    State change requested by an event handler.

    A field left as None keeps the current value. The status is always
    recorded, so every applied transition produces exactly one update.
    """

    model_config = ConfigDict(frozen=True)

    registration: Optional[RegistrationState] = None
    call: Optional[CallState] = None
    status: SessionStatus


class RequestAck(BaseModel):
    """
    Immediate result of a session action.

    ``accepted`` only says the provider took the request. The outcome of
    the operation arrives later as a provider event.
    """

    accepted: bool
    message: Optional[str] = None


# Provider events

class EventKind(str, Enum):
    """Event names as emitted by the provider channel."""
    REGISTRATION_SUCCESS = "RegistrationSuccess"
    REGISTRATION_FAILED = "RegistrationFailed"
    INCOMING_CALL = "IncomingCall"
    CALL_ESTABLISHED = "CallEstablished"
    CALL_ENDED = "CallEnded"
    CALL_ERROR = "CallError"


class RegistrationSuccess(BaseModel):
    kind: Literal[EventKind.REGISTRATION_SUCCESS] = EventKind.REGISTRATION_SUCCESS


class RegistrationFailed(BaseModel):
    kind: Literal[EventKind.REGISTRATION_FAILED] = EventKind.REGISTRATION_FAILED
    message: str = UNKNOWN_ERROR

    @property
    def failure(self) -> RegistrationFailure:
        return RegistrationFailure(self.message)


class IncomingCall(BaseModel):
    kind: Literal[EventKind.INCOMING_CALL] = EventKind.INCOMING_CALL
    caller: str = UNKNOWN_CALLER


class CallEstablished(BaseModel):
    kind: Literal[EventKind.CALL_ESTABLISHED] = EventKind.CALL_ESTABLISHED


class CallEnded(BaseModel):
    kind: Literal[EventKind.CALL_ENDED] = EventKind.CALL_ENDED


class CallError(BaseModel):
    kind: Literal[EventKind.CALL_ERROR] = EventKind.CALL_ERROR
    message: str = UNKNOWN_ERROR

    @property
    def failure(self) -> CallFailure:
        return CallFailure(self.message)


ProviderEvent = Union[
    RegistrationSuccess,
    RegistrationFailed,
    IncomingCall,
    CallEstablished,
    CallEnded,
    CallError,
]


def describe(payload: Any, key: str, default: str) -> str:
    """
    Pull a human readable description out of a loosely typed payload.

    Accepts a mapping carrying ``key``, an exception, or any other value
    (described with ``str()``). Falls back to ``default`` when nothing
    usable is found.
    """
    if payload is None:
        return default
    if isinstance(payload, dict):
        value = payload.get(key)
        return str(value) if value not in (None, "") else default
    if isinstance(payload, BaseException):
        message = getattr(payload, "message", None) or str(payload)
        return message or default
    text = str(payload)
    return text or default


def parse_event(kind: Union[str, EventKind], payload: Any = None) -> ProviderEvent:
    """Build a typed event from a raw (name, payload) notification."""
    try:
        kind = EventKind(kind)
    except ValueError:
        raise UnknownEventError(f"Unknown provider event: {kind}")

    if kind == EventKind.REGISTRATION_SUCCESS:
        return RegistrationSuccess()
    if kind == EventKind.REGISTRATION_FAILED:
        return RegistrationFailed(message=describe(payload, "message", UNKNOWN_ERROR))
    if kind == EventKind.INCOMING_CALL:
        return IncomingCall(caller=describe(payload, "from", UNKNOWN_CALLER))
    if kind == EventKind.CALL_ESTABLISHED:
        return CallEstablished()
    if kind == EventKind.CALL_ENDED:
        return CallEnded()
    return CallError(message=describe(payload, "message", UNKNOWN_ERROR))


# API payloads

class CallRequest(BaseModel):
    """Request body for placing a call."""

    callee_address: str = Field(..., max_length=255, description="SIP number or user to call")


class ActionResponse(BaseModel):
    """Response model for session actions."""

    accepted: bool = Field(..., description="Whether the provider took the request")
    message: Optional[str] = Field(None, description="Provider message, if any")
    registration_state: RegistrationState
    call_state: CallState
    status: SessionStatus


class SessionStateResponse(BaseModel):
    """Response model for the current session state."""

    registration_state: RegistrationState
    call_state: CallState
    status: SessionStatus


class StatusHistoryResponse(BaseModel):
    """Response model for recent status updates."""

    statuses: list[SessionStatus]
    count: int
