"""Fallback cascade orchestrating analysis, routing, extraction and fusion."""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import partial

from receipt_cascade.budget import CostBudget
from receipt_cascade.config import PipelineSettings
from receipt_cascade.errors import (
    BudgetExceededError,
    ProcessingFailedError,
    ProcessingTimeoutError,
)
from receipt_cascade.fusion import FusionEngine
from receipt_cascade.imaging.analyzer import analyze_quality, decode_image
from receipt_cascade.imaging.enhancer import EnhancedImage, EnhancementOptions, enhance_image
from receipt_cascade.integrations.base import ExtractionProvider, OCREngine
from receipt_cascade.invoker import ModelInvoker
from receipt_cascade.last_resort import LastResortExtractor
from receipt_cascade.models import (
    AccountTier,
    ExtractionCandidate,
    ExtractionResult,
    ProcessingRoute,
    QualityMetrics,
)
from receipt_cascade.postprocess import post_process
from receipt_cascade.prompt_renderer import PromptRenderer
from receipt_cascade.routing.catalog import default_catalog, load_catalog
from receipt_cascade.routing.selector import RouteSelector

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]


@dataclass
class _Run:
    """Mutable bookkeeping for one request."""

    tier: AccountTier
    on_progress: ProgressCallback | None = None
    routes_attempted: list[str] = field(default_factory=list)
    total_cost: float = 0.0
    fallback_used: bool = False
    accepted: ExtractionCandidate | None = None
    accepted_route: ProcessingRoute | None = None

    def charge(self, route: ProcessingRoute) -> None:
        self.routes_attempted.append(route.name)
        self.total_cost += route.cost_per_request

    def notify(self, event_type: str, message: str) -> None:
        if self.on_progress:
            self.on_progress(event_type, message)

    def failure_details(self) -> dict:
        return {
            "routes_attempted": list(self.routes_attempted),
            "total_cost": self.total_cost,
            "fallback_used": self.fallback_used,
        }


class ReceiptPipeline:
    """
    Receipt extraction with a bounded fallback cascade.

    One request runs: decode, quality analysis, enhancement, primary route,
    optional fallback route, last-resort OCR when no AI result is acceptable,
    optional fusion for complex receipts, then post-processing. Every paid
    invocation is reserved against the shared ``CostBudget`` before it is
    made and stays charged whether or not it succeeds.
    """

    def __init__(
        self,
        providers: Mapping[str, ExtractionProvider],
        last_resort: LastResortExtractor,
        budget: CostBudget | None = None,
        selector: RouteSelector | None = None,
        settings: PipelineSettings | None = None,
        renderer: PromptRenderer | None = None,
        enhancement_options: EnhancementOptions | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            providers: Registry mapping provider names to extraction providers
            last_resort: OCR-based extractor used when every AI route fails
            budget: Shared daily ledger (default: a new one with the settings' limit)
            selector: Route selector (default: the built-in catalog)
            settings: Thresholds and limits
            renderer: Prompt renderer passed to the invoker
            enhancement_options: Switches for the image enhancer
        """
        self.settings = settings or PipelineSettings()
        self.budget = budget or CostBudget(self.settings.daily_limit)
        self.selector = selector or RouteSelector(tier_ceilings=self.settings.tier_ceilings)
        self.invoker = ModelInvoker(providers, renderer, self.settings.attempt_timeout_s)
        self.last_resort = last_resort
        self.enhancement_options = enhancement_options or EnhancementOptions()
        self.fusion = FusionEngine(
            fusion_threshold=self.settings.fusion_threshold,
            acceptance_threshold=self.settings.acceptance_threshold,
            confidence_cap=self.settings.fusion_confidence_cap,
            tolerance=self.settings.numeric_agreement_tolerance,
            match_threshold=self.settings.item_match_threshold,
        )

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        providers: Mapping[str, ExtractionProvider],
        ocr_engine: OCREngine,
        budget: CostBudget | None = None,
    ) -> "ReceiptPipeline":
        """Build a pipeline whose catalog comes from ``settings.routes_file``."""
        catalog = load_catalog(settings.routes_file) if settings.routes_file else default_catalog()
        return cls(
            providers=providers,
            last_resort=LastResortExtractor(ocr_engine, settings.last_resort_confidence),
            budget=budget,
            selector=RouteSelector(catalog, settings.tier_ceilings),
            settings=settings,
        )

    def _accepted(self, candidate: ExtractionCandidate | None) -> bool:
        return candidate is not None and candidate.confidence >= self.settings.acceptance_threshold

    async def _attempt(
        self,
        run: _Run,
        image: EnhancedImage,
        route: ProcessingRoute,
        metrics: QualityMetrics,
    ) -> ExtractionCandidate | None:
        """Reserve, charge and invoke one route."""
        if not self.invoker.supports(route):
            logger.warning("Skipping route %s: provider '%s' not configured", route.name, route.provider)
            run.notify("attempt_failed", f"{route.name}: provider {route.provider} not configured")
            return None

        try:
            self.budget.reserve(route)
        except BudgetExceededError as e:
            logger.info("Skipping route %s: %s", route.name, e)
            run.notify("attempt_failed", f"{route.name}: not affordable")
            return None

        run.charge(route)
        candidate = await self.invoker.invoke(
            image, route, metrics, timeout=self.settings.attempt_timeout_s
        )
        if candidate is None:
            run.notify("attempt_failed", f"{route.name}: no usable result")
        return candidate

    async def _cascade(
        self, run: _Run, image: EnhancedImage, metrics: QualityMetrics
    ) -> ExtractionCandidate | None:
        """Primary then fallback; returns the accepted candidate or None."""
        primary_route = self.selector.select(
            metrics, run.tier, self.budget, self.invoker.providers
        )
        run.notify("route", f"Selected {primary_route.name} for {metrics.processing_route} receipt")
        primary = await self._attempt(run, image, primary_route, metrics)

        if self._accepted(primary):
            run.accepted, run.accepted_route = primary, primary_route
            return primary

        if primary is not None:
            logger.info(
                "Primary %s confidence %.0f below acceptance %.0f",
                primary_route.name,
                primary.confidence,
                self.settings.acceptance_threshold,
            )
            run.notify("attempt_failed", f"{primary_route.name}: confidence {primary.confidence:.0f}")

        fallback_route = self.selector.select_fallback(
            primary_route, run.tier, self.budget, self.invoker.providers
        )
        if fallback_route is None:
            logger.info("No affordable fallback after %s", primary_route.name)
            return None

        run.fallback_used = True
        run.notify("fallback", f"Trying fallback {fallback_route.name}")
        fallback = await self._attempt(run, image, fallback_route, metrics)

        best, best_route = primary, primary_route
        if fallback is not None and (primary is None or fallback.confidence > primary.confidence):
            best, best_route = fallback, fallback_route

        if self._accepted(best):
            run.accepted, run.accepted_route = best, best_route
            return best

        logger.info("Fallback %s did not produce an acceptable result", fallback_route.name)
        return None

    async def _fuse(
        self, run: _Run, image: EnhancedImage, candidate: ExtractionCandidate, metrics: QualityMetrics
    ) -> ExtractionCandidate:
        used_provider = run.accepted_route.provider if run.accepted_route else ""
        secondary_route = self.selector.select_secondary(
            used_provider, run.tier, self.budget, self.invoker.providers
        )
        if secondary_route is None:
            logger.info("No affordable secondary provider for fusion")
            return candidate

        run.notify("fusion", f"Requesting second opinion from {secondary_route.name}")
        secondary = await self._attempt(run, image, secondary_route, metrics)
        fused = self.fusion.combine(candidate, secondary)
        run.accepted = fused
        return fused

    async def _run_last_resort(
        self,
        run: _Run,
        image_bytes: bytes,
        metrics: QualityMetrics | None,
        deadline: float | None,
    ) -> ExtractionCandidate:
        loop = asyncio.get_running_loop()
        run.fallback_used = True
        run.routes_attempted.append(self.last_resort.route_name)
        run.notify("last_resort", f"Falling back to {self.last_resort.route_name}")

        remaining = None if deadline is None else deadline - loop.time()
        if remaining is not None and remaining <= 0:
            raise ProcessingTimeoutError(
                "Deadline expired before the last-resort extraction", run.failure_details()
            )

        try:
            async with asyncio.timeout(remaining):
                return await loop.run_in_executor(
                    None, self.last_resort.extract, image_bytes, metrics
                )
        except TimeoutError as e:
            raise ProcessingTimeoutError(
                "Deadline expired during the last-resort extraction", run.failure_details()
            ) from e
        except Exception as e:
            logger.exception("Last-resort extraction failed")
            raise ProcessingFailedError(
                f"All extraction routes failed: {e}", run.failure_details()
            ) from e

    async def process_receipt(
        self,
        image_bytes: bytes,
        account_tier: AccountTier | str,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        """
        Extract structured data from one receipt image.

        Args:
            image_bytes: Encoded receipt image
            account_tier: Caller's account tier (bounds per-request route cost)
            timeout: Optional overall deadline in seconds
            on_progress: Optional callback for progress updates (event_type, message)

        ``timeout`` is the only supported way to bound a request. Only the
        deadline falls through to the last resort; cancelling the task
        propagates ``asyncio.CancelledError`` at once, with the costs already
        reserved left charged and the receipt not counted.

        Returns:
            A successful ExtractionResult

        Raises:
            ImageDecodeError: If the bytes are not a decodable image (no cost incurred)
            ProcessingFailedError: If the last-resort extraction also fails
            ProcessingTimeoutError: If the deadline leaves no time for the last resort
        """
        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        ai_deadline = None if deadline is None else deadline - self.settings.last_resort_reserve_s
        run = _Run(tier=AccountTier(account_tier), on_progress=on_progress)

        image = await loop.run_in_executor(None, decode_image, image_bytes)

        metrics: QualityMetrics | None = None
        enhanced: EnhancedImage | None = None
        candidate: ExtractionCandidate | None = None
        try:
            async with asyncio.timeout_at(ai_deadline):
                metrics = await loop.run_in_executor(
                    None,
                    partial(
                        analyze_quality,
                        image,
                        max_dimension=self.settings.analysis_max_dimension,
                        gradient_threshold=self.settings.text_gradient_threshold,
                    ),
                )
                run.notify(
                    "quality",
                    f"Quality {metrics.overall_score:.1f} ({metrics.processing_route})",
                )
                enhanced = await loop.run_in_executor(
                    None, enhance_image, image, metrics, self.enhancement_options
                )
                candidate = await self._cascade(run, enhanced, metrics)
                if candidate is not None and self.fusion.should_fuse(candidate, metrics, run.tier):
                    candidate = await self._fuse(run, enhanced, candidate, metrics)
        except TimeoutError:
            logger.warning("AI stages ran out of time after %s", run.routes_attempted)
            candidate = run.accepted
        except Exception:
            logger.exception("Unexpected error in AI stages; using last resort")
            candidate = run.accepted

        if candidate is None:
            ocr_bytes = enhanced.data if enhanced is not None else image_bytes
            candidate = await self._run_last_resort(run, ocr_bytes, metrics, deadline)

        candidate = post_process(candidate).model_copy(update={"cost_estimate": run.total_cost})
        self.budget.complete_receipt()

        elapsed_ms = (time.perf_counter() - start) * 1000
        run.notify(
            "done",
            f"{candidate.vendor}: {candidate.total_amount:.2f} {candidate.currency} "
            f"(confidence {candidate.confidence:.0f}, cost {run.total_cost:.4f})",
        )
        return ExtractionResult(
            success=True,
            data=candidate,
            fallback_used=run.fallback_used,
            total_cost=run.total_cost,
            processing_time_ms=elapsed_ms,
            routes_attempted=run.routes_attempted,
        )
