from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends

from .core.config import Settings, get_settings
from .llm.catalog import ModelCatalog, default_catalog
from .llm.health import ModelHealthTracker
from .llm.resolver import ModelResolver
from .orchestration.canary import CanaryController
from .orchestration.canary_store import PostgresCanaryStateStore

_health_tracker_singleton: ModelHealthTracker | None = None
_catalog_singleton: ModelCatalog | None = None
_canary_singleton: CanaryController | None = None
_canary_store_singleton: PostgresCanaryStateStore | None = None


def get_health_tracker_singleton() -> ModelHealthTracker:
    global _health_tracker_singleton
    if _health_tracker_singleton is None:
        _health_tracker_singleton = ModelHealthTracker()
    return _health_tracker_singleton


def get_catalog_singleton() -> ModelCatalog:
    global _catalog_singleton
    if _catalog_singleton is None:
        _catalog_singleton = default_catalog()
    return _catalog_singleton


def get_canary_singleton(settings: Settings) -> CanaryController:
    global _canary_singleton, _canary_store_singleton
    if _canary_singleton is None:
        if settings.canary.persistence_enabled:
            _canary_store_singleton = PostgresCanaryStateStore.from_settings(settings)
        _canary_singleton = CanaryController(settings.canary, durable_store=_canary_store_singleton)
    return _canary_singleton


async def close_singletons() -> None:
    global _canary_singleton, _canary_store_singleton
    if _canary_store_singleton is not None:
        await _canary_store_singleton.close()
    _canary_store_singleton = None
    _canary_singleton = None


async def get_health_tracker() -> AsyncIterator[ModelHealthTracker]:
    yield get_health_tracker_singleton()


async def get_model_resolver(
    settings: Settings = Depends(get_settings),
    health: ModelHealthTracker = Depends(get_health_tracker),
) -> AsyncIterator[ModelResolver]:
    yield ModelResolver(catalog=get_catalog_singleton(), health=health, settings=settings.models)


async def get_canary_controller(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[CanaryController]:
    yield get_canary_singleton(settings)
