"""Route selection by complexity tier, account tier and remaining budget."""

import logging
from collections.abc import Collection

from receipt_cascade.budget import CostBudget
from receipt_cascade.config import DEFAULT_TIER_CEILINGS
from receipt_cascade.models import (
    AccountTier,
    ComplexityTier,
    ProcessingRoute,
    QualityMetrics,
)
from receipt_cascade.routing.catalog import RouteCatalog, default_catalog

logger = logging.getLogger(__name__)


class RouteSelector:
    """Chooses primary, fallback and fusion routes from a catalog.

    Selection only ever picks routes within the account tier's per-request
    cost ceiling. When ``providers`` is given, routes served by any other
    provider are left out, so a deployment with a single API key still
    reaches that provider's routes. Affordability against the daily budget is
    checked for the fallback and secondary routes; the primary route is
    always returned and the orchestrator decides whether it can be paid for.
    """

    def __init__(
        self,
        catalog: RouteCatalog | None = None,
        tier_ceilings: dict[AccountTier, float | None] | None = None,
    ) -> None:
        self.catalog = catalog or default_catalog()
        self.tier_ceilings = dict(tier_ceilings or DEFAULT_TIER_CEILINGS)
        self.catalog.ensure_tiers_covered(self.tier_ceilings)

    def available_routes(
        self,
        tier: AccountTier,
        providers: Collection[str] | None = None,
    ) -> list[ProcessingRoute]:
        """Routes within the tier ceiling, optionally limited to ``providers``."""
        routes = self.catalog.within_ceiling(self.tier_ceilings.get(tier))
        if providers is None:
            return routes
        return [route for route in routes if route.provider in providers]

    def select(
        self,
        metrics: QualityMetrics,
        tier: AccountTier,
        budget: CostBudget | None = None,
        providers: Collection[str] | None = None,
    ) -> ProcessingRoute:
        """
        Select the primary route for a receipt.

        Args:
            metrics: Quality metrics of the image
            tier: Account tier of the caller
            budget: Daily ledger; used only to log when the pick is unaffordable
            providers: Names of the providers that have a client (None = all)

        Returns:
            The preferred route for the complexity tier, or the tier's default
            when no preferred route is available. When no registered provider
            serves any route of the tier, the unfiltered choice is returned and
            the orchestrator skips it.
        """
        available = self.available_routes(tier, providers)
        if not available:
            logger.warning("No configured provider serves a %s tier route", tier)
            available = self.available_routes(tier)
        complexity = metrics.processing_route

        route = None
        for name in self.catalog.preferences.get(complexity, []):
            route = next((r for r in available if r.name == name), None)
            if route is not None:
                break

        if route is None:
            if complexity == ComplexityTier.COMPLEX:
                route = max(available, key=lambda r: r.expected_accuracy)
            else:
                route = available[0]
            logger.info(
                "No preferred route for %s receipts on %s tier; using %s",
                complexity,
                tier,
                route.name,
            )

        if budget is not None and not budget.can_afford(route):
            logger.info("Selected route %s exceeds the remaining budget", route.name)
        return route

    def select_fallback(
        self,
        primary: ProcessingRoute,
        tier: AccountTier,
        budget: CostBudget,
        providers: Collection[str] | None = None,
    ) -> ProcessingRoute | None:
        """Next affordable route in catalog order, excluding ``primary``."""
        for route in self.available_routes(tier, providers):
            if route.name != primary.name and budget.can_afford(route):
                return route
        return None

    def select_secondary(
        self,
        exclude_provider: str,
        tier: AccountTier,
        budget: CostBudget,
        providers: Collection[str] | None = None,
    ) -> ProcessingRoute | None:
        """First affordable route served by a different provider."""
        for route in self.available_routes(tier, providers):
            if route.provider != exclude_provider and budget.can_afford(route):
                return route
        return None
