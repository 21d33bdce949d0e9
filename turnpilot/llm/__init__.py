from .catalog import ModelCatalog, ModelInfo, StaticModelCatalog, default_catalog, model_supports
from .health import ModelHealthTracker
from .resolver import ModelResolver

__all__ = [
    "ModelCatalog",
    "ModelHealthTracker",
    "ModelInfo",
    "ModelResolver",
    "StaticModelCatalog",
    "default_catalog",
    "model_supports",
]
