import io
import re

import numpy as np
from PIL import Image, ImageDraw

from receipt_cascade.models import (
    ComplexityTier,
    ExtractionCandidate,
    LineItem,
    QualityMetrics,
)


def clean_cli_output(output: str) -> str:
    """
    Remove ANSI escape codes, Rich formatting characters, whitespace, and newlines
    from CLI output to make assertions robust against terminal wrapping.
    """
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    output = ansi_escape.sub("", output)
    return re.sub(r"[\s│╭╮╰╯─]", "", output)


def png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def flat_image(value: int = 128, size: tuple[int, int] = (200, 300)) -> Image.Image:
    """Uniform grey image: no edges, no contrast."""
    return Image.new("RGB", size, (value, value, value))


def receipt_image(size: tuple[int, int] = (300, 450), lines: int = 12) -> Image.Image:
    """White page with dark bars standing in for printed text lines."""
    width, height = size
    image = Image.new("RGB", size, (255, 255, 255))
    draw = ImageDraw.Draw(image)
    spacing = height // (lines + 1)
    for i in range(1, lines + 1):
        y = i * spacing
        draw.rectangle([20, y, width - 20 - (i % 4) * 30, y + 6], fill=(0, 0, 0))
    return image


def noise_image(size: tuple[int, int] = (200, 200), seed: int = 7) -> Image.Image:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
    return Image.fromarray(pixels)


def make_metrics(
    sharpness: float = 80.0,
    contrast: float = 75.0,
    brightness: float = 50.0,
    text_density: float = 15.0,
    overall_score: float = 76.0,
    processing_route: ComplexityTier = ComplexityTier.SIMPLE,
    estimated_line_items: int = 1,
) -> QualityMetrics:
    return QualityMetrics(
        sharpness=sharpness,
        contrast=contrast,
        brightness=brightness,
        text_density=text_density,
        overall_score=overall_score,
        processing_route=processing_route,
        estimated_line_items=estimated_line_items,
    )


def make_candidate(**overrides) -> ExtractionCandidate:
    values = {
        "vendor": "Corner Cafe",
        "date": "2024-03-14",
        "total_amount": 10.80,
        "subtotal": 10.00,
        "tax": 0.80,
        "line_items": [
            LineItem(description="Coffee", quantity=2, unit_price=3.50, total_price=7.00),
            LineItem(description="Muffin", quantity=1, unit_price=3.00, total_price=3.00),
        ],
        "category": "Meals & Entertainment",
        "confidence": 80.0,
        "processing_time_ms": 120.0,
        "route_name": "gpt-4o-mini",
        "cost_estimate": 0.002,
    }
    values.update(overrides)
    return ExtractionCandidate(**values)
