import asyncio
import logging
import os
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path

import typer
from dotenv import load_dotenv
from pydantic import ValidationError

# Vision's gRPC client warns about fork support when used from thread pools
os.environ.setdefault("GRPC_ENABLE_FORK_SUPPORT", "0")

from receipt_cascade.budget import CostBudget
from receipt_cascade.config import PipelineSettings
from receipt_cascade.errors import (
    CatalogError,
    ImageDecodeError,
    ProcessingFailedError,
    ProcessingTimeoutError,
)
from receipt_cascade.imaging.analyzer import analyze_image_bytes
from receipt_cascade.integrations.anthropic_provider import AnthropicProvider
from receipt_cascade.integrations.base import ExtractionProvider, OCREngine
from receipt_cascade.integrations.ocr import VisionOCREngine
from receipt_cascade.integrations.openai_provider import OpenAIProvider
from receipt_cascade.integrations.tesseract import TesseractOCREngine
from receipt_cascade.models import AccountTier, ExtractionResult
from receipt_cascade.pipeline import ReceiptPipeline
from receipt_cascade.routing.catalog import RouteCatalog, default_catalog, load_catalog
from receipt_cascade.routing.selector import RouteSelector

load_dotenv()

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)


class OCRChoice(StrEnum):
    TESSERACT = "tesseract"
    VISION = "vision"


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context):
    """Receipt extraction with cost-aware model routing."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_providers() -> dict[str, ExtractionProvider]:
    """Register a provider for every API key found in the environment."""
    providers: dict[str, ExtractionProvider] = {}

    openai_api_key = os.getenv("OPENAI_API_KEY")
    if openai_api_key:
        providers[OpenAIProvider.name] = OpenAIProvider(api_key=openai_api_key)
    else:
        typer.echo("Warning: OPENAI_API_KEY not found. OpenAI routes disabled.", err=True)

    anthropic_api_key = os.getenv("ANTHROPIC_API_KEY")
    if anthropic_api_key:
        providers[AnthropicProvider.name] = AnthropicProvider(api_key=anthropic_api_key)
    else:
        typer.echo("Warning: ANTHROPIC_API_KEY not found. Anthropic routes disabled.", err=True)

    return providers


def build_ocr_engine(choice: str) -> OCREngine:
    if choice == OCRChoice.VISION:
        engine = VisionOCREngine()
        # Create the gRPC client on the main thread rather than in the executor
        _ = engine.client
        return engine
    return TesseractOCREngine()


def load_settings(**overrides) -> PipelineSettings:
    """Read settings from the environment, exiting on invalid values."""
    try:
        return PipelineSettings.from_env(**overrides)
    except (ValidationError, ValueError) as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1) from e


def load_route_catalog(routes_file: Path | None) -> RouteCatalog:
    return load_catalog(routes_file) if routes_file else default_catalog()


async def process_images(
    pipeline: ReceiptPipeline,
    images: list[Path],
    tier: AccountTier,
    timeout: float | None = None,
    on_progress: Callable[[str, str], None] | None = None,
) -> list[ExtractionResult]:
    """Process every image concurrently against the same budget.

    Fatal per-image errors are turned into failed results so one bad file
    does not abort the batch.
    """

    async def process_one(path: Path) -> ExtractionResult:
        try:
            image_bytes = path.read_bytes()
        except OSError as e:
            return ExtractionResult(success=False, error=f"Cannot read {path}: {e}")

        def image_progress(event_type: str, message: str) -> None:
            if on_progress:
                on_progress(event_type, f"[{path.name}] {message}")

        try:
            return await pipeline.process_receipt(
                image_bytes, tier, timeout=timeout, on_progress=image_progress
            )
        except (ImageDecodeError, ProcessingFailedError, ProcessingTimeoutError) as e:
            image_progress("error", str(e))
            return ExtractionResult.from_error(e)

    tasks = [asyncio.create_task(process_one(path)) for path in images]
    return list(await asyncio.gather(*tasks))


@app.command()
def process(
    images: list[Path] = typer.Argument(..., help="Receipt image files"),
    tier: AccountTier = typer.Option(AccountTier.FREE, "--tier", "-t", help="Account tier"),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Overall deadline per receipt in seconds"
    ),
    routes: Path | None = typer.Option(None, "--routes", help="JSON route catalog"),
    daily_limit: float | None = typer.Option(
        None, "--daily-limit", help="Daily spend limit in USD"
    ),
    ocr: OCRChoice | None = typer.Option(None, "--ocr", help="Last-resort OCR engine"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every routing decision"),
):
    """Extract structured data from receipt images and print JSON results."""
    configure_logging(verbose)

    overrides: dict[str, object] = {}
    if routes is not None:
        overrides["routes_file"] = routes
    if daily_limit is not None:
        overrides["daily_limit"] = daily_limit
    if ocr is not None:
        overrides["last_resort_engine"] = ocr.value

    settings = load_settings(**overrides)

    providers = build_providers()

    try:
        ocr_engine = build_ocr_engine(settings.last_resort_engine)
    except Exception as e:
        typer.echo(f"Failed to initialize OCR engine: {e}", err=True)
        raise typer.Exit(code=1) from e

    try:
        pipeline = ReceiptPipeline.from_settings(
            settings,
            providers,
            ocr_engine,
            budget=CostBudget(settings.daily_limit),
        )
    except CatalogError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    def cli_progress(event_type: str, message: str):
        """Progress goes to stderr so stdout stays valid JSON."""
        typer.echo(message, err=True)

    results = asyncio.run(
        process_images(pipeline, images, tier, timeout=timeout, on_progress=cli_progress)
    )

    for result in results:
        typer.echo(result.model_dump_json(indent=2))

    snapshot = pipeline.budget.snapshot()
    typer.echo(
        f"Spent ${snapshot.current_spent:.4f} of ${snapshot.daily_limit:.2f} "
        f"on {snapshot.receipt_count} receipt(s)",
        err=True,
    )

    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@app.command()
def analyze(
    image: Path = typer.Argument(..., help="Receipt image file"),
    routes: Path | None = typer.Option(None, "--routes", help="JSON route catalog"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Print quality metrics and the route each account tier would use."""
    configure_logging(verbose)
    settings = load_settings()

    try:
        catalog = load_route_catalog(routes)
        selector = RouteSelector(catalog, settings.tier_ceilings)
        metrics = analyze_image_bytes(
            image.read_bytes(),
            max_dimension=settings.analysis_max_dimension,
            gradient_threshold=settings.text_gradient_threshold,
        )
    except (CatalogError, ImageDecodeError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(metrics.model_dump_json(indent=2))
    for account_tier in AccountTier:
        route = selector.select(metrics, account_tier)
        typer.echo(f"{account_tier.value}: {route.name} (${route.cost_per_request:.4f})")


@app.command(name="routes")
def list_routes(
    tier: AccountTier | None = typer.Option(None, "--tier", "-t", help="Only routes this tier may use"),
    routes: Path | None = typer.Option(None, "--routes", help="JSON route catalog"),
):
    """List the route catalog."""
    try:
        catalog = load_route_catalog(routes)
    except CatalogError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    if tier is None:
        available = list(catalog.routes)
    else:
        settings = load_settings()
        available = catalog.within_ceiling(settings.ceiling_for(tier))

    for route in available:
        typer.echo(
            f"{route.name:<20} {route.provider:<10} ${route.cost_per_request:<8.4f} "
            f"accuracy {route.expected_accuracy:.0f}%  ~{route.average_latency_ms}ms"
        )


def main():
    app()


if __name__ == "__main__":
    main()
