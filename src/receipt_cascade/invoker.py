"""Single extraction attempt against one route."""

import asyncio
import logging
import re
import time
from collections.abc import Mapping

from pydantic import ValidationError

from receipt_cascade.errors import ParseError, ProviderInvocationError
from receipt_cascade.imaging.enhancer import EnhancedImage
from receipt_cascade.integrations.base import ExtractionProvider
from receipt_cascade.models import (
    ExtractionCandidate,
    ProcessingRoute,
    ProviderReceipt,
    QualityMetrics,
)
from receipt_cascade.prompt_renderer import PromptRenderer

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT = 30.0

_FENCE_PATTERN = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = _FENCE_PATTERN.match(text)
    if match:
        return match.group(1)
    return text.strip()


def parse_provider_response(
    text: str,
    route: ProcessingRoute,
    metrics: QualityMetrics | None,
    processing_time_ms: float,
) -> ExtractionCandidate:
    """
    Strictly parse raw provider output into a candidate.

    Raises:
        ParseError: If the text is not JSON or does not match the receipt schema
    """
    payload = strip_code_fences(text)
    try:
        receipt = ProviderReceipt.model_validate_json(payload)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        if any(error["type"] == "json_invalid" for error in errors):
            raise ParseError(
                f"Response from {route.name} is not valid JSON",
                {"preview": payload[:200]},
            ) from e
        raise ParseError(
            f"Response from {route.name} does not match the receipt schema",
            {"errors": errors},
        ) from e

    return receipt.to_candidate(route, metrics, processing_time_ms)


class ModelInvoker:
    """Runs one extraction attempt and turns every recoverable failure into None.

    Cost attribution is left to the orchestrator, which reserves the route
    before calling ``invoke``.
    """

    def __init__(
        self,
        providers: Mapping[str, ExtractionProvider],
        renderer: PromptRenderer | None = None,
        default_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
    ) -> None:
        """
        Initialize the invoker.

        Args:
            providers: Registry mapping a route's provider name to its client
            renderer: Prompt renderer (default: the packaged templates)
            default_timeout: Per-attempt timeout in seconds
        """
        self.providers = dict(providers)
        self.renderer = renderer or PromptRenderer()
        self.default_timeout = default_timeout

    def supports(self, route: ProcessingRoute) -> bool:
        return route.provider in self.providers

    async def invoke(
        self,
        image: EnhancedImage,
        route: ProcessingRoute,
        metrics: QualityMetrics | None,
        timeout: float | None = None,
    ) -> ExtractionCandidate | None:
        """
        Execute one extraction attempt.

        Args:
            image: Enhanced image to submit
            route: Route to invoke
            metrics: Quality metrics, used for prompt notes and attached to the result
            timeout: Seconds before the attempt is abandoned

        Returns:
            The parsed candidate, or None if the provider failed, timed out,
            is not registered, or returned unparseable output
        """
        provider = self.providers.get(route.provider)
        if provider is None:
            logger.warning(
                "No provider registered for '%s'; route %s unavailable",
                route.provider,
                route.name,
            )
            return None

        prompt = self.renderer.build(route, metrics, media_type=image.media_type)
        limit = self.default_timeout if timeout is None else timeout
        start = time.perf_counter()

        try:
            async with asyncio.timeout(limit):
                text = await provider.extract(image.data, prompt)
        except TimeoutError:
            logger.warning("Route %s timed out after %.1fs", route.name, limit)
            return None
        except ProviderInvocationError as e:
            logger.warning("Route %s failed: %s", route.name, e)
            return None

        elapsed_ms = (time.perf_counter() - start) * 1000
        try:
            candidate = parse_provider_response(text, route, metrics, elapsed_ms)
        except ParseError as e:
            logger.warning("Route %s returned unusable output: %s", route.name, e)
            return None

        logger.info(
            "Route %s extracted '%s' total=%.2f confidence=%.0f in %.0fms",
            route.name,
            candidate.vendor,
            candidate.total_amount,
            candidate.confidence,
            elapsed_ms,
        )
        return candidate
