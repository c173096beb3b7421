"""Perceptual image-quality analysis for receipt routing.

The analyzer works on a luminance copy of the image bounded to
``max_dimension`` pixels on its long edge, so the cost of analysis does not
grow with the upload size. All metrics are normalised to 0-100.
"""

import io
import logging
import math

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from receipt_cascade.errors import ImageDecodeError
from receipt_cascade.models import ComplexityTier, QualityMetrics

logger = logging.getLogger(__name__)

ANALYSIS_MAX_DIMENSION = 1000
GRADIENT_THRESHOLD = 30.0

# Weighted scoring favouring receipt-like characteristics
SCORE_WEIGHTS = {
    "sharpness": 0.3,
    "contrast": 0.3,
    "brightness": 0.2,
    "text_density": 0.2,
}

LAPLACIAN_KERNEL = np.array(
    [[-1, -1, -1], [-1, 8, -1], [-1, -1, -1]],
    dtype=np.float64,
)


def decode_image(data: bytes) -> Image.Image:
    """Decode raw upload bytes into an RGB Pillow image.

    EXIF orientation is applied so phone photos are analysed upright.

    Args:
        data: Raw image bytes (JPEG, PNG, WebP, ...)

    Returns:
        A fully loaded RGB image

    Raises:
        ImageDecodeError: If the bytes are empty or not a decodable image
    """
    if not data:
        raise ImageDecodeError("Image payload is empty")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(
            "Failed to decode image", {"size": len(data), "reason": str(e)}
        ) from e


def to_luminance(image: Image.Image) -> np.ndarray:
    """Return the rounded 0.299R + 0.587G + 0.114B grey levels as float64."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    grey = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    return np.clip(np.rint(grey), 0, 255)


def _bounded(image: Image.Image, max_dimension: int) -> Image.Image:
    if max(image.size) <= max_dimension:
        return image
    bounded = image.copy()
    bounded.thumbnail((max_dimension, max_dimension), Image.Resampling.BILINEAR)
    return bounded


def calculate_sharpness(grey: np.ndarray) -> float:
    """Variance of the Laplacian response over the image interior."""
    height, width = grey.shape
    if height < 3 or width < 3:
        return 0.0
    response = np.zeros((height - 2, width - 2), dtype=np.float64)
    for ky in range(3):
        for kx in range(3):
            weight = LAPLACIAN_KERNEL[ky, kx]
            response += weight * grey[ky : ky + height - 2, kx : kx + width - 2]
    return min(100.0, float(response.var()) / 100.0)


def calculate_contrast(grey: np.ndarray) -> float:
    return min(100.0, float(grey.std()) / 2.55)


def calculate_brightness(grey: np.ndarray) -> float:
    return min(100.0, float(grey.mean()) / 2.55)


def estimate_text_density(grey: np.ndarray, threshold: float = GRADIENT_THRESHOLD) -> float:
    """Edge-pixel ratio used as a proxy for how much ink is on the page.

    Counts interior pixels whose forward horizontal or vertical luminance
    difference exceeds ``threshold``; the ratio is scaled by 10,000.
    """
    height, width = grey.shape
    if height < 3 or width < 3:
        return 0.0
    current = grey[1:-1, 1:-1]
    gradient_x = np.abs(grey[1:-1, 2:] - current)
    gradient_y = np.abs(grey[2:, 1:-1] - current)
    edges = int(np.count_nonzero((gradient_x > threshold) | (gradient_y > threshold)))
    return min(100.0, edges / (width * height) * 10000)


def effective_brightness(brightness: float) -> float:
    """Brightness penalised by its distance from the 50-point optimum (max 50%)."""
    penalty = min(1.0, abs(brightness - 50.0) / 50.0)
    return brightness * (1.0 - penalty * 0.5)


def calculate_overall_score(
    sharpness: float, contrast: float, brightness: float, text_density: float
) -> float:
    return (
        sharpness * SCORE_WEIGHTS["sharpness"]
        + contrast * SCORE_WEIGHTS["contrast"]
        + effective_brightness(brightness) * SCORE_WEIGHTS["brightness"]
        + text_density * SCORE_WEIGHTS["text_density"]
    )


def classify_route(overall_score: float, text_density: float) -> ComplexityTier:
    if overall_score >= 70 and text_density <= 30:
        return ComplexityTier.SIMPLE
    if overall_score >= 50 or text_density <= 50:
        return ComplexityTier.STANDARD
    return ComplexityTier.COMPLEX


def estimate_line_items(text_density: float) -> int:
    return max(1, math.floor(text_density / 10))


def build_metrics(
    sharpness: float, contrast: float, brightness: float, text_density: float
) -> QualityMetrics:
    """Derive score, complexity tier and line-item estimate from raw metrics."""
    overall = calculate_overall_score(sharpness, contrast, brightness, text_density)
    return QualityMetrics(
        sharpness=sharpness,
        contrast=contrast,
        brightness=brightness,
        text_density=text_density,
        overall_score=min(100.0, max(0.0, overall)),
        processing_route=classify_route(overall, text_density),
        estimated_line_items=estimate_line_items(text_density),
    )


def analyze_quality(
    image: Image.Image,
    max_dimension: int = ANALYSIS_MAX_DIMENSION,
    gradient_threshold: float = GRADIENT_THRESHOLD,
) -> QualityMetrics:
    """Analyze image quality and determine the processing complexity tier.

    Args:
        image: Decoded image (see ``decode_image``)
        max_dimension: Long-edge bound for the analysis copy
        gradient_threshold: Luminance step counted as an edge for text density

    Returns:
        QualityMetrics for the image
    """
    grey = to_luminance(_bounded(image, max_dimension))
    metrics = build_metrics(
        sharpness=calculate_sharpness(grey),
        contrast=calculate_contrast(grey),
        brightness=calculate_brightness(grey),
        text_density=estimate_text_density(grey, gradient_threshold),
    )
    logger.debug(
        "Quality: sharpness=%.1f contrast=%.1f brightness=%.1f density=%.1f "
        "overall=%.1f route=%s",
        metrics.sharpness,
        metrics.contrast,
        metrics.brightness,
        metrics.text_density,
        metrics.overall_score,
        metrics.processing_route,
    )
    return metrics


def analyze_image_bytes(data: bytes, **kwargs) -> QualityMetrics:
    """Decode ``data`` and analyze it in one step."""
    return analyze_quality(decode_image(data), **kwargs)
