"""Conditional preprocessing of receipt images before provider submission.

Every stage is gated by the quality metrics so adequate images are not
reprocessed. The enhancer never modifies its input image or metrics.
"""

import io
import logging

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter
from pydantic import BaseModel, ConfigDict, Field

from receipt_cascade.imaging.analyzer import to_luminance
from receipt_cascade.models import QualityMetrics

logger = logging.getLogger(__name__)

BINARIZATION_CONTRAST = 40.0
DENOISE_SHARPNESS = 30.0
SHARPEN_SHARPNESS = 50.0
BRIGHTNESS_RANGE = (30.0, 70.0)
TARGET_BRIGHTNESS = 50.0

UNSHARP_KERNEL = (0, -1, 0, -1, 5, -1, 0, -1, 0)


class EnhancementOptions(BaseModel):
    """Switches and bounds for the enhancement pipeline."""

    model_config = ConfigDict(frozen=True)

    adaptive_binarization: bool = True
    noise_reduction: bool = True
    block_size: int = Field(16, ge=2)
    block_threshold_ratio: float = Field(0.9, gt=0.0)
    upscale_factor: float = Field(1.5, gt=0.0)
    max_width: int = Field(2000, ge=1)
    max_height: int = Field(2500, ge=1)


class EnhancedImage(BaseModel):
    """Encoded image ready for submission to a provider."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    media_type: str = "image/png"
    width: int
    height: int
    stages: tuple[str, ...] = ()


def resize_for_ocr(image: Image.Image, options: EnhancementOptions) -> Image.Image:
    """Scale towards a ~300 DPI equivalent, bounded to the configured size."""
    width, height = image.size
    scale = min(
        options.upscale_factor,
        options.max_width / width,
        options.max_height / height,
    )
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    if new_size == image.size:
        return image.copy()
    return image.resize(new_size, Image.Resampling.LANCZOS)


def adaptive_binarize(
    image: Image.Image, block_size: int = 16, ratio: float = 0.9
) -> Image.Image:
    """Binarize against a per-block threshold at ``ratio`` of the block mean.

    A local threshold tolerates uneven lighting across a single receipt.
    """
    grey = to_luminance(image)
    height, width = grey.shape
    padded_h = -(-height // block_size) * block_size
    padded_w = -(-width // block_size) * block_size

    padded = np.full((padded_h, padded_w), np.nan)
    padded[:height, :width] = grey
    blocks = padded.reshape(padded_h // block_size, block_size, padded_w // block_size, block_size)
    block_means = np.nanmean(blocks, axis=(1, 3))

    thresholds = np.repeat(np.repeat(block_means * ratio, block_size, axis=0), block_size, axis=1)
    thresholds = thresholds[:height, :width]
    binary = np.where(grey < thresholds, 0, 255).astype(np.uint8)
    return Image.fromarray(binary).convert("RGB")


def reduce_noise(image: Image.Image) -> Image.Image:
    """3x3 median filter over luminance."""
    grey = image.convert("L").filter(ImageFilter.MedianFilter(size=3))
    return grey.convert("RGB")


def normalize_brightness(image: Image.Image, brightness: float) -> Image.Image:
    """Linear gain towards the target brightness of 50."""
    gain = TARGET_BRIGHTNESS / max(brightness, 1.0)
    return ImageEnhance.Brightness(image).enhance(gain)


def sharpen(image: Image.Image) -> Image.Image:
    return image.filter(ImageFilter.Kernel((3, 3), UNSHARP_KERNEL, scale=1))


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def enhance_image(
    image: Image.Image,
    metrics: QualityMetrics,
    options: EnhancementOptions | None = None,
) -> EnhancedImage:
    """Apply the metric-gated preprocessing pipeline and encode the result.

    Stages, each gated independently:
        1. Adaptive binarization when contrast < 40
        2. Median noise reduction when sharpness < 30
        3. Brightness normalization when brightness < 30 or > 70
        4. Sharpening when sharpness < 50

    Args:
        image: Decoded source image (left untouched)
        metrics: Quality metrics of the source image
        options: Pipeline switches and output bounds

    Returns:
        EnhancedImage with PNG bytes and the list of stages applied
    """
    options = options or EnhancementOptions()
    stages: list[str] = []

    working = resize_for_ocr(image.convert("RGB"), options)

    if metrics.contrast < BINARIZATION_CONTRAST and options.adaptive_binarization:
        working = adaptive_binarize(
            working, options.block_size, options.block_threshold_ratio
        )
        stages.append("binarize")

    if metrics.sharpness < DENOISE_SHARPNESS and options.noise_reduction:
        working = reduce_noise(working)
        stages.append("denoise")

    low, high = BRIGHTNESS_RANGE
    if metrics.brightness < low or metrics.brightness > high:
        working = normalize_brightness(working, metrics.brightness)
        stages.append("brightness")

    if metrics.sharpness < SHARPEN_SHARPNESS:
        working = sharpen(working)
        stages.append("sharpen")

    logger.debug(
        "Enhanced image to %dx%d with stages %s", working.width, working.height, stages
    )
    return EnhancedImage(
        data=encode_png(working),
        width=working.width,
        height=working.height,
        stages=tuple(stages),
    )
