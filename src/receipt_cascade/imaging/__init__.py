"""Image decoding, quality analysis and enhancement."""

from receipt_cascade.imaging.analyzer import (
    analyze_image_bytes,
    analyze_quality,
    build_metrics,
    classify_route,
    decode_image,
)
from receipt_cascade.imaging.enhancer import (
    EnhancedImage,
    EnhancementOptions,
    enhance_image,
)

__all__ = [
    "analyze_image_bytes",
    "analyze_quality",
    "build_metrics",
    "classify_route",
    "decode_image",
    "EnhancedImage",
    "EnhancementOptions",
    "enhance_image",
]
