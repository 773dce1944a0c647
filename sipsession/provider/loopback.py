"""In-process SIP provider for development and tests."""

import asyncio
import logging
from typing import Any, List, Optional, Tuple

from ..config import Settings
from ..errors import ProviderError
from ..models import EventKind
from .base import Provider, ProviderHandle

logger = logging.getLogger(__name__)


class LoopbackProvider(Provider):
    """
    Provider that answers its own requests.

    Registration succeeds unless the password equals ``reject_password``.
    Outgoing calls are answered automatically when ``auto_answer`` is set.
    Events fire ``event_delay`` seconds after the request was accepted.
    """

    def __init__(
        self,
        event_delay: float = 0.0,
        auto_answer: bool = True,
        reject_password: Optional[str] = None,
    ):
        super().__init__()
        self.event_delay = event_delay
        self.auto_answer = auto_answer
        self.reject_password = reject_password

        self.requests: List[Tuple[str, tuple]] = []
        self._initialized = False
        self._listening = False
        self._registered = False
        self._domain: Optional[str] = None
        self._remote: Optional[str] = None

    def _schedule(self, kind: EventKind, payload: Any = None) -> None:
        """Emit an event after the configured delay."""
        loop = asyncio.get_running_loop()
        loop.call_later(self.event_delay, self.emit, kind, payload)

    async def initialize(self) -> None:
        self.requests.append(("initialize", ()))
        self._initialized = True
        logger.info("Loopback provider initialized")

    async def listen_for_incoming_calls(self) -> None:
        self.requests.append(("listen_for_incoming_calls", ()))
        if not self._initialized:
            raise ProviderError("Provider not initialized")
        self._listening = True

    async def register(self, username: str, domain: str, password: str) -> None:
        self.requests.append(("register", (username, domain)))
        if not self._initialized:
            raise ProviderError("Provider not initialized")

        if self.reject_password is not None and password == self.reject_password:
            logger.info(f"Loopback registration for {username}@{domain} will fail")
            self._registered = False
            self._schedule(EventKind.REGISTRATION_FAILED, {"message": "403 Forbidden"})
            return

        self._registered = True
        self._domain = domain
        logger.info(f"Loopback registration accepted for {username}@{domain}")
        self._schedule(EventKind.REGISTRATION_SUCCESS)

    async def call(self, address: str) -> None:
        self.requests.append(("call", (address,)))
        if not self._registered:
            raise ProviderError("Not registered yet")

        self._remote = f"{address}@{self._domain}"
        logger.info(f"Loopback dialing {self._remote}")
        if self.auto_answer:
            self._schedule(EventKind.CALL_ESTABLISHED)

    async def hangup(self) -> None:
        self.requests.append(("hangup", ()))
        if self._remote is None:
            raise ProviderError("No active call")
        logger.info(f"Loopback hanging up {self._remote}")
        self._remote = None

    def simulate_incoming_call(self, caller: str) -> None:
        """Pretend a remote party is calling us."""
        if not self._listening:
            logger.warning(f"Incoming call from {caller} dropped, not listening")
            return
        self._remote = caller
        self.emit(EventKind.INCOMING_CALL, {"from": caller})

    def simulate_remote_hangup(self) -> None:
        """Pretend the remote party hung up."""
        self._remote = None
        self.emit(EventKind.CALL_ENDED)

    def simulate_call_error(self, message: str) -> None:
        """Pretend the call failed on the network side."""
        self._remote = None
        self.emit(EventKind.CALL_ERROR, {"message": message})


def create_provider(settings: Settings) -> ProviderHandle:
    """Build the provider selected in settings."""
    if settings.provider == "loopback":
        return ProviderHandle.of(LoopbackProvider(
            event_delay=settings.loopback_event_delay,
            auto_answer=settings.loopback_auto_answer,
            reject_password=settings.loopback_reject_password,
        ))
    logger.warning("No SIP provider configured")
    return ProviderHandle.absent("SIP provider not available")
