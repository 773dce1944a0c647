"""SIP provider capability consumed by the session core."""

from .base import EventEmitter, Provider, ProviderHandle, Subscription
from .loopback import LoopbackProvider, create_provider

__all__ = [
    "EventEmitter",
    "Provider",
    "ProviderHandle",
    "Subscription",
    "LoopbackProvider",
    "create_provider",
]
