from .registry import (
    ProviderHandler,
    ProviderPacket,
    ProviderRegistry,
    ProviderRequest,
    from_callables,
    normalize_packets,
)
from .runner import run_providers_legacy

__all__ = [
    "ProviderHandler",
    "ProviderPacket",
    "ProviderRegistry",
    "ProviderRequest",
    "from_callables",
    "normalize_packets",
    "run_providers_legacy",
]
