"""Route catalog and selection."""

from receipt_cascade.routing.catalog import (
    DEFAULT_PREFERENCES,
    DEFAULT_ROUTES,
    RouteCatalog,
    default_catalog,
    load_catalog,
)
from receipt_cascade.routing.selector import RouteSelector

__all__ = [
    "DEFAULT_PREFERENCES",
    "DEFAULT_ROUTES",
    "RouteCatalog",
    "RouteSelector",
    "default_catalog",
    "load_catalog",
]
