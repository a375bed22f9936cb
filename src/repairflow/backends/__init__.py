"""Collaborator interfaces and their concrete platform clients."""

from repairflow.backends.base import (
    CatalogBrowser,
    CatalogScope,
    Categorizer,
    CategoryOption,
    EstimateWorkspace,
    PartsMarketplace,
    ShopPlatform,
    VehicleStatus,
)

__all__ = [
    "CatalogBrowser",
    "CatalogScope",
    "Categorizer",
    "CategoryOption",
    "EstimateWorkspace",
    "PartsMarketplace",
    "ShopPlatform",
    "VehicleStatus",
]
