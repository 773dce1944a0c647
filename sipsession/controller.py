"""Registration and call state for a single SIP session."""

import logging
from collections import deque
from typing import Deque, List, Optional

from .config import get_settings
from .errors import (
    CallAlreadyActive,
    InvalidCredentials,
    InvalidTarget,
    NoActiveCall,
    NotRegistered,
    ProviderError,
    ProviderUnavailable,
)
from .models import (
    CallState,
    CallTarget,
    Credentials,
    RegistrationState,
    RequestAck,
    SessionStatus,
    StatusKind,
    Transition,
)
from .provider import Provider, ProviderHandle, create_provider

logger = logging.getLogger(__name__)


class SessionController:
    """
    Single owner of registration and call state.

    User actions (login, place_call, hangup) are validated here before
    anything reaches the provider. Provider events are turned into
    ``Transition`` objects by the dispatcher and applied with ``apply``.
    """

    def __init__(
        self,
        provider: ProviderHandle,
        allow_idle_hangup: bool = True,
        history_size: int = 50,
    ):
        self.provider = provider
        self.allow_idle_hangup = allow_idle_hangup

        self._registration = RegistrationState.UNREGISTERED
        self._call = CallState.IDLE
        self._status = SessionStatus.info("Not connected")
        self._history: Deque[SessionStatus] = deque([self._status], maxlen=max(history_size, 1))

    @property
    def registration_state(self) -> RegistrationState:
        return self._registration

    @property
    def call_state(self) -> CallState:
        return self._call

    @property
    def is_registered(self) -> bool:
        return self._registration == RegistrationState.REGISTERED

    def current_status(self) -> SessionStatus:
        """Current status for the presentation layer."""
        return self._status

    def status_history(self) -> List[SessionStatus]:
        """Recent statuses, newest last."""
        return list(self._history)

    def _set_status(self, status: SessionStatus) -> None:
        self._status = status
        self._history.append(status)
        log = logger.warning if status.kind == StatusKind.ERROR else logger.info
        log(f"[{self._registration.value}/{self._call.value}] {status.message}")

    def _require_provider(self) -> Provider:
        try:
            return self.provider.require()
        except ProviderUnavailable as e:
            self._set_status(SessionStatus.error(str(e)))
            raise

    def apply(self, transition: Transition) -> None:
        """
        Apply a state transition and record its status.

        A registration failure always drops the call. A call leaving idle
        while not registered is refused; the registration part of the
        transition and its status still apply.
        """
        registration = transition.registration or self._registration
        call = transition.call or self._call

        if registration == RegistrationState.REGISTRATION_FAILED:
            call = CallState.IDLE
        elif (
            self._call == CallState.IDLE
            and call != CallState.IDLE
            and registration != RegistrationState.REGISTERED
        ):
            logger.warning(f"Refusing call state {call.value} while {registration.value}")
            call = CallState.IDLE

        self._registration = registration
        self._call = call
        self._set_status(transition.status)

    async def start(self) -> None:
        """Initialize the provider and start listening for incoming calls."""
        if not self.provider.is_available:
            self._set_status(SessionStatus.error(self.provider.reason or "SIP provider not available"))
            return

        provider = self.provider.require()
        try:
            await provider.initialize()
            await provider.listen_for_incoming_calls()
        except ProviderError as e:
            logger.error(f"Provider initialization failed: {e}")
            self._set_status(SessionStatus.error(f"Initialization failed: {e}"))

    async def login(self, credentials: Credentials) -> RequestAck:
        """
        Request registration.

        Returns once the provider accepted or rejected the request. Whether
        registration succeeded is reported later by a provider event.
        """
        if self.is_registered:
            self._set_status(SessionStatus.info("Already registered"))
            return RequestAck(accepted=False, message="Already registered")

        if not credentials.is_complete:
            self._set_status(SessionStatus.error("Fill all SIP login fields"))
            raise InvalidCredentials("username, domain and password are required")

        provider = self._require_provider()

        username = credentials.username.strip()
        domain = credentials.domain.strip()

        self._registration = RegistrationState.REGISTERING
        self._set_status(SessionStatus.info("Registering..."))
        logger.info(f"Registering {username}@{domain}")

        try:
            await provider.register(username, domain, credentials.password)
        except ProviderError as e:
            self.apply(Transition(
                registration=RegistrationState.REGISTRATION_FAILED,
                call=CallState.IDLE,
                status=SessionStatus.error(f"Registration error: {e}"),
            ))
            return RequestAck(accepted=False, message=str(e))

        return RequestAck(accepted=True)

    async def place_call(self, target: CallTarget) -> RequestAck:
        """Request an outgoing call to ``target``."""
        if not target.is_valid:
            self._set_status(SessionStatus.error("Enter SIP number to call"))
            raise InvalidTarget("callee address is required")

        if not self.is_registered:
            self._set_status(SessionStatus.error("Please register first"))
            raise NotRegistered("not registered")

        if self._call != CallState.IDLE:
            self._set_status(SessionStatus.error("Call already in progress"))
            raise CallAlreadyActive(f"call is {self._call.value}")

        provider = self._require_provider()
        address = target.callee_address.strip()

        self._call = CallState.DIALING
        self._set_status(SessionStatus.info(f"Calling {address}..."))

        try:
            await provider.call(address)
        except ProviderError as e:
            self.apply(Transition(
                call=CallState.IDLE,
                status=SessionStatus.error(f"Call failed: {e}"),
            ))
            return RequestAck(accepted=False, message=str(e))

        return RequestAck(accepted=True)

    async def hangup(self) -> RequestAck:
        """Request termination of the current call."""
        provider = self._require_provider()

        if self._call == CallState.IDLE and not self.allow_idle_hangup:
            self._set_status(SessionStatus.error("No active call"))
            raise NoActiveCall("no active call")

        previous = self._call
        if previous != CallState.IDLE:
            self._call = CallState.ENDING
            self._set_status(SessionStatus.info("Hanging up..."))

        try:
            await provider.hangup()
        except ProviderError as e:
            # A CallEnded event may have raced us to idle
            restored = previous if self._call == CallState.ENDING else self._call
            self.apply(Transition(
                call=restored,
                status=SessionStatus.error(f"Hangup failed: {e}"),
            ))
            return RequestAck(accepted=False, message=str(e))

        if self._call == CallState.ENDING:
            self.apply(Transition(call=CallState.IDLE, status=SessionStatus.info("Call ended")))
        elif previous == CallState.IDLE and self._call == CallState.IDLE:
            self._set_status(SessionStatus.info("Call ended"))
        # otherwise a CallEnded or CallError event already returned us to idle
        return RequestAck(accepted=True)


# Global session controller instance
_controller: Optional[SessionController] = None


def get_session_controller() -> SessionController:
    """Get session controller instance."""
    global _controller
    if _controller is None:
        settings = get_settings()
        _controller = SessionController(
            provider=create_provider(settings),
            allow_idle_hangup=settings.allow_idle_hangup,
            history_size=settings.status_history_size,
        )
    return _controller
