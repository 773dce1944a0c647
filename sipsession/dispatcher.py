"""Translate provider events into session state transitions."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from .controller import SessionController, get_session_controller
from .errors import DispatcherError
from .models import (
    CallError,
    CallState,
    EventKind,
    IncomingCall,
    ProviderEvent,
    RegistrationFailed,
    RegistrationState,
    SessionStatus,
    Transition,
)
from .provider import Subscription

logger = logging.getLogger(__name__)

Handler = Callable[[ProviderEvent], Optional[Transition]]


class EventDispatcher:
    """
    Feeds provider events to the session controller.

    Events are queued in arrival order and handled one at a time by a
    single worker task, so the controller is never mutated concurrently.
    """

    def __init__(self, controller: SessionController):
        self.controller = controller
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        self._active = False

        self._handlers: Dict[EventKind, Handler] = {
            EventKind.REGISTRATION_SUCCESS: self._on_registration_success,
            EventKind.REGISTRATION_FAILED: self._on_registration_failed,
            EventKind.INCOMING_CALL: self._on_incoming_call,
            EventKind.CALL_ESTABLISHED: self._on_call_established,
            EventKind.CALL_ENDED: self._on_call_ended,
            EventKind.CALL_ERROR: self._on_call_error,
        }

    @property
    def active(self) -> bool:
        return self._active

    # Handlers

    def _on_registration_success(self, event: ProviderEvent) -> Transition:
        return Transition(
            registration=RegistrationState.REGISTERED,
            status=SessionStatus.success("Registered successfully"),
        )

    def _on_registration_failed(self, event: RegistrationFailed) -> Transition:
        return Transition(
            registration=RegistrationState.REGISTRATION_FAILED,
            call=CallState.IDLE,
            status=SessionStatus.error(f"Registration failed: {event.message}"),
        )

    def _on_incoming_call(self, event: IncomingCall) -> Optional[Transition]:
        if not self.controller.is_registered:
            logger.warning(f"Ignoring incoming call from {event.caller}: not registered")
            return None
        if self.controller.call_state != CallState.IDLE:
            logger.warning(
                f"Ignoring incoming call from {event.caller}: "
                f"call is {self.controller.call_state.value}"
            )
            return None
        return Transition(
            call=CallState.RINGING,
            status=SessionStatus.info(f"Incoming call from {event.caller}"),
        )

    def _on_call_established(self, event: ProviderEvent) -> Optional[Transition]:
        if not self.controller.is_registered:
            logger.warning("Ignoring call established: not registered")
            return None
        return Transition(
            call=CallState.CONNECTED,
            status=SessionStatus.success("Call connected"),
        )

    def _on_call_ended(self, event: ProviderEvent) -> Transition:
        return Transition(call=CallState.IDLE, status=SessionStatus.info("Call ended"))

    def _on_call_error(self, event: CallError) -> Transition:
        return Transition(
            call=CallState.IDLE,
            status=SessionStatus.error(f"Call error: {event.message}"),
        )

    # Dispatch

    def dispatch(self, event: ProviderEvent) -> Optional[Transition]:
        """Handle one event right away and return the applied transition."""
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning(f"No handler for event {event.kind}")
            return None

        transition = handler(event)
        if transition is None:
            return None

        logger.info(f"Event {event.kind.value} applied")
        self.controller.apply(transition)
        return transition

    def _enqueue(self, event: ProviderEvent) -> None:
        if self._queue is None:
            logger.warning(f"Dropping {event.kind.value}: dispatcher not active")
            return
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        """Process queued events in arrival order."""
        while True:
            event = await self._queue.get()
            try:
                self.dispatch(event)
            except Exception as e:
                logger.exception(f"Failed to handle {event.kind.value}: {e}")
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    @asynccontextmanager
    async def activate(self):
        """
        Subscribe to provider events for the lifetime of the block.

        The subscription and the worker task are released on every exit
        path, so activating again later never doubles up handlers. Only one
        dispatcher may drain a given provider at a time.
        """
        if self._active:
            raise DispatcherError("Event dispatcher is already active")

        handle = self.controller.provider
        provider = handle.require() if handle.is_available else None
        if provider is not None and provider.events.dispatcher is not None:
            raise DispatcherError("Provider events are already dispatched elsewhere")

        self._active = True
        try:
            if provider is not None:
                provider.events.dispatcher = self
                self._queue = asyncio.Queue()
                self._subscription = provider.events.add_listener(self._enqueue)
                self._worker = asyncio.create_task(self._run())
                logger.info("Event dispatcher subscribed")
            await self.controller.start()
            yield self
        finally:
            await self._teardown()
            self._active = False

    async def _teardown(self) -> None:
        handle = self.controller.provider
        if handle.is_available and handle.require().events.dispatcher is self:
            handle.require().events.dispatcher = None
        if self._subscription is not None:
            self._subscription.remove()
            self._subscription = None
            logger.info("Event dispatcher unsubscribed")
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._queue = None


# Global event dispatcher instance
_dispatcher: Optional[EventDispatcher] = None


def get_event_dispatcher() -> EventDispatcher:
    """Get event dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher(get_session_controller())
    return _dispatcher
