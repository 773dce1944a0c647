"""Test doubles for the provider capability."""

from typing import Dict, List, Optional, Tuple

from sipsession.errors import ProviderError
from sipsession.provider import Provider


class RecordingProvider(Provider):
    """Provider that records requests and never emits on its own."""

    def __init__(self, reject: Optional[Dict[str, str]] = None):
        super().__init__()
        self.calls: List[Tuple[str, tuple]] = []
        self.reject = reject or {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.reject:
            raise ProviderError(self.reject[name])

    def count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)

    async def initialize(self) -> None:
        self._record("initialize")

    async def listen_for_incoming_calls(self) -> None:
        self._record("listen_for_incoming_calls")

    async def register(self, username: str, domain: str, password: str) -> None:
        self._record("register", username, domain, password)

    async def call(self, address: str) -> None:
        self._record("call", address)

    async def hangup(self) -> None:
        self._record("hangup")
