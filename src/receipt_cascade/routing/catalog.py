"""Static catalog of processing routes.

The catalog is configuration: an embedded default table, or a JSON file of
the same shape loaded with ``load_catalog``::

    {
      "routes": [{"name": "...", "provider": "...", "model": "...",
                  "cost_per_request": 0.002, "expected_accuracy": 92,
                  "average_latency_ms": 2500, "description": "..."}],
      "preferences": {"simple": ["..."], "standard": ["..."], "complex": ["..."]}
    }
"""

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from receipt_cascade.errors import CatalogError
from receipt_cascade.models import ComplexityTier, ProcessingRoute

# Ordered by cost-effectiveness; fallback selection walks this order.
DEFAULT_ROUTES: tuple[ProcessingRoute, ...] = (
    ProcessingRoute(
        name="gpt-4.1-nano",
        provider="openai",
        model="gpt-4.1-nano",
        cost_per_request=0.0002,
        expected_accuracy=88,
        average_latency_ms=1500,
        description="Ultra-fast, ultra-cheap for simple receipts",
    ),
    ProcessingRoute(
        name="gpt-4o-mini",
        provider="openai",
        model="gpt-4o-mini",
        cost_per_request=0.002,
        expected_accuracy=92,
        average_latency_ms=2500,
        description="Balanced cost/accuracy for standard receipts",
    ),
    ProcessingRoute(
        name="claude-haiku-4-5",
        provider="anthropic",
        model="claude-haiku-4-5",
        cost_per_request=0.0015,
        expected_accuracy=90,
        average_latency_ms=2000,
        description="Alternative AI provider for diversity",
    ),
    ProcessingRoute(
        name="gpt-4o",
        provider="openai",
        model="gpt-4o",
        cost_per_request=0.005,
        expected_accuracy=95,
        average_latency_ms=3500,
        description="Premium accuracy for complex receipts",
    ),
)

DEFAULT_PREFERENCES: dict[ComplexityTier, list[str]] = {
    ComplexityTier.SIMPLE: ["gpt-4.1-nano"],
    ComplexityTier.STANDARD: ["gpt-4o-mini", "claude-haiku-4-5"],
    ComplexityTier.COMPLEX: ["gpt-4o", "gpt-4o-mini"],
}


class RouteCatalog(BaseModel):
    """Validated, read-only route table with per-tier name preferences."""

    model_config = ConfigDict(frozen=True)

    routes: tuple[ProcessingRoute, ...] = Field(min_length=1)
    preferences: dict[ComplexityTier, list[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_names(self) -> "RouteCatalog":
        names = [route.name for route in self.routes]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate route names: {duplicates}")
        unknown = sorted(
            {name for wanted in self.preferences.values() for name in wanted}
            - set(names)
        )
        if unknown:
            raise ValueError(f"preferences reference unknown routes: {unknown}")
        return self

    def get(self, name: str) -> ProcessingRoute | None:
        return next((route for route in self.routes if route.name == name), None)

    def within_ceiling(self, ceiling: float | None) -> list[ProcessingRoute]:
        """Routes whose per-request cost is at most ``ceiling`` (None = all)."""
        if ceiling is None:
            return list(self.routes)
        return [route for route in self.routes if route.cost_per_request <= ceiling]

    def ensure_tiers_covered(self, ceilings: dict) -> None:
        """Raise ``CatalogError`` if some account tier could use no route."""
        for tier, ceiling in ceilings.items():
            if not self.within_ceiling(ceiling):
                raise CatalogError(
                    f"No route is within the cost ceiling of tier '{tier}'",
                    {"tier": str(tier), "ceiling": ceiling},
                )


def default_catalog() -> RouteCatalog:
    return RouteCatalog(routes=DEFAULT_ROUTES, preferences=DEFAULT_PREFERENCES)


def load_catalog(path: str | Path) -> RouteCatalog:
    """Load and validate a route catalog from a JSON file.

    Args:
        path: Path to the JSON catalog

    Returns:
        The validated RouteCatalog

    Raises:
        CatalogError: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise CatalogError(f"Route catalog not found: {path}") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"Route catalog is not valid JSON: {path}", {"reason": str(e)}) from e

    try:
        return RouteCatalog.model_validate(payload)
    except ValidationError as e:
        raise CatalogError(f"Invalid route catalog: {path}", {"reason": str(e)}) from e
