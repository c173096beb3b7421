import functools
import io
import os

import pytest
from google.api_core.exceptions import PermissionDenied
from PIL import Image, ImageDraw

RECEIPT_LINES = [
    "CORNER CAFE",
    "123 Main Street",
    "03/14/2024",
    "Coffee          7.00",
    "Muffin          3.00",
    "SUBTOTAL       10.00",
    "TAX             0.80",
    "TOTAL          10.80",
]


def requires_env(*names):
    """Skip marker for tests that need real credentials."""
    missing = [name for name in names if not os.getenv(name)]
    return pytest.mark.skipif(
        bool(missing),
        reason=f"Missing required environment variables: {', '.join(missing)}",
    )


def skip_on_billing_error(func):
    """
    Decorator to skip tests if Google Cloud billing is not enabled.

    Useful for Google Cloud Vision API and other GCP services that require billing.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermissionDenied as e:
            if "billing" in str(e).lower():
                pytest.skip("Google Cloud Vision API requires billing to be enabled.")
            raise

    return wrapper


def rendered_receipt(scale: int = 3) -> bytes:
    """PNG of a short printed receipt, large enough for OCR."""
    image = Image.new("L", (200, 20 * len(RECEIPT_LINES) + 20), 255)
    draw = ImageDraw.Draw(image)
    for i, line in enumerate(RECEIPT_LINES):
        draw.text((10, 10 + i * 20), line, fill=0)
    image = image.resize((image.width * scale, image.height * scale), Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
