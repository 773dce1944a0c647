"""Provider capability contract and event channel."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, List, Optional, TypeVar

from ..errors import ProviderUnavailable, UnknownEventError
from ..models import EventKind, ProviderEvent, parse_event

logger = logging.getLogger(__name__)

Listener = Callable[[ProviderEvent], None]


class Subscription:
    """Handle returned by ``EventEmitter.add_listener``."""

    def __init__(self, emitter: "EventEmitter", listener: Listener):
        self._emitter = emitter
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def remove(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if self._active:
            self._emitter._remove(self._listener)
            self._active = False


class EventEmitter:
    """Delivers provider events to listeners in emission order."""

    def __init__(self):
        self._listeners: List[Listener] = []
        # Dispatcher currently draining this emitter, at most one
        self.dispatcher: Optional[object] = None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, event: ProviderEvent) -> None:
        logger.debug(f"Emitting {event.kind.value}")
        for listener in list(self._listeners):
            listener(event)

    def emit_raw(self, kind: str, payload: Any = None) -> None:
        """Emit a loosely typed (name, payload) notification."""
        try:
            event = parse_event(kind, payload)
        except UnknownEventError as e:
            logger.warning(f"Dropping provider notification: {e}")
            return
        self.emit(event)


class Provider(ABC):
    """
    SIP signalling capability.

    Every request method returns once the request has been accepted and
    raises ``ProviderError`` when it is rejected. Outcomes (registered,
    connected, failed...) are reported later through ``events``.
    """

    def __init__(self):
        self.events = EventEmitter()

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the provider for use."""

    @abstractmethod
    async def listen_for_incoming_calls(self) -> None:
        """Start reporting IncomingCall events."""

    @abstractmethod
    async def register(self, username: str, domain: str, password: str) -> None:
        """Request registration with the SIP server."""

    @abstractmethod
    async def call(self, address: str) -> None:
        """Request an outgoing call to ``address``."""

    @abstractmethod
    async def hangup(self) -> None:
        """Request termination of the current call."""

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        self.events.emit_raw(kind, payload)


P = TypeVar("P", bound=Provider)


class ProviderHandle(Generic[P]):
    """
    Optional provider capability.

    Either wraps a provider or records why there is none, so callers
    branch on ``is_available`` instead of checking for None.
    """

    def __init__(self, provider: Optional[P] = None, reason: Optional[str] = None):
        self._provider = provider
        self.reason = reason if provider is None else None

    @classmethod
    def of(cls, provider: P) -> "ProviderHandle[P]":
        return cls(provider=provider)

    @classmethod
    def absent(cls, reason: str = "SIP provider not available") -> "ProviderHandle":
        return cls(provider=None, reason=reason)

    @property
    def is_available(self) -> bool:
        return self._provider is not None

    def require(self) -> P:
        """Return the provider or raise ``ProviderUnavailable``."""
        if self._provider is None:
            raise ProviderUnavailable(self.reason or "SIP provider not available")
        return self._provider

    def __repr__(self) -> str:
        if self._provider is None:
            return f"ProviderHandle(absent, reason={self.reason!r})"
        return f"ProviderHandle({type(self._provider).__name__})"
