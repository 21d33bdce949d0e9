from __future__ import annotations

import asyncio
from typing import Sequence

from ..core.logging import get_logger
from ..orchestration.enums import ProviderName
from .registry import ProviderPacket, ProviderRegistry, ProviderRequest, normalize_packets

logger = get_logger(name=__name__)


async def _run_one(
    registry: ProviderRegistry,
    provider: ProviderName,
    request: ProviderRequest,
    timeout_seconds: float | None,
) -> list[ProviderPacket]:
    handler = registry.get(provider)
    if handler is None:
        logger.warning("legacy_provider_unregistered", provider=provider.value, trace_id=request.trace_id)
        return []
    try:
        if timeout_seconds is not None:
            result = await asyncio.wait_for(handler(request), timeout=timeout_seconds)
        else:
            result = await handler(request)
        return normalize_packets(result, provider=provider.value)
    except Exception as exc:
        logger.warning(
            "legacy_provider_failed",
            provider=provider.value,
            trace_id=request.trace_id,
            error=str(exc) or type(exc).__name__,
        )
        return [
            ProviderPacket(
                name=provider,
                content=f"{provider.value}: Error loading data.",
                data={"error": str(exc) or type(exc).__name__},
                token_estimate=10,
            )
        ]


async def run_providers_legacy(
    providers: Sequence[ProviderName],
    request: ProviderRequest,
    *,
    registry: ProviderRegistry,
    timeout_seconds: float | None = None,
) -> list[ProviderPacket]:
    """Run providers concurrently without a graph, isolating each provider's failure."""
    if not providers:
        return []
    results = await asyncio.gather(
        *(_run_one(registry, provider, request, timeout_seconds) for provider in providers)
    )
    packets: list[ProviderPacket] = []
    for batch in results:
        packets.extend(batch)
    return packets
