"""Unit tests for the metric-gated image enhancer."""

import io

import numpy as np
import pytest
from PIL import Image

from receipt_cascade.imaging.enhancer import (
    EnhancementOptions,
    adaptive_binarize,
    enhance_image,
    normalize_brightness,
    resize_for_ocr,
)
from tests.utils import flat_image, make_metrics, receipt_image

pytestmark = pytest.mark.unit


def decode(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestResize:
    def test_upscales_small_images(self):
        resized = resize_for_ocr(flat_image(size=(400, 600)), EnhancementOptions())
        assert resized.size == (600, 900)

    def test_respects_maximum_bounds(self):
        resized = resize_for_ocr(flat_image(size=(1800, 1000)), EnhancementOptions())
        assert resized.size == (2000, 1111)

    def test_height_bound(self):
        resized = resize_for_ocr(flat_image(size=(1000, 5000)), EnhancementOptions())
        assert resized.size == (500, 2500)


class TestStages:
    def test_good_image_only_resized(self):
        metrics = make_metrics(sharpness=80, contrast=75, brightness=50)
        result = enhance_image(flat_image(size=(100, 100)), metrics)
        assert result.stages == ()
        assert result.media_type == "image/png"
        assert (result.width, result.height) == (150, 150)
        assert decode(result.data).size == (150, 150)

    def test_all_stages_for_poor_image(self):
        metrics = make_metrics(sharpness=10, contrast=20, brightness=20)
        result = enhance_image(receipt_image(), metrics)
        assert result.stages == ("binarize", "denoise", "brightness", "sharpen")

    def test_sharpen_only_between_thresholds(self):
        metrics = make_metrics(sharpness=40, contrast=75, brightness=50)
        result = enhance_image(receipt_image(), metrics)
        assert result.stages == ("sharpen",)

    def test_bright_image_is_normalized(self):
        metrics = make_metrics(sharpness=80, contrast=75, brightness=85)
        result = enhance_image(flat_image(220), metrics)
        assert result.stages == ("brightness",)

    def test_options_disable_binarization_and_denoise(self):
        metrics = make_metrics(sharpness=10, contrast=20, brightness=50)
        options = EnhancementOptions(adaptive_binarization=False, noise_reduction=False)
        result = enhance_image(receipt_image(), metrics, options)
        assert result.stages == ("sharpen",)

    def test_input_image_untouched(self):
        image = receipt_image()
        before = image.tobytes()
        enhance_image(image, make_metrics(sharpness=10, contrast=20, brightness=20))
        assert image.tobytes() == before


class TestFilters:
    def test_binarize_outputs_only_black_and_white(self):
        binary = adaptive_binarize(receipt_image())
        values = np.unique(np.asarray(binary.convert("L")))
        assert set(values.tolist()) <= {0, 255}

    def test_binarize_handles_sizes_not_multiple_of_block(self):
        binary = adaptive_binarize(receipt_image(size=(37, 53)), block_size=16)
        assert binary.size == (37, 53)

    def test_brightness_gain_lightens_dark_image(self):
        dark = flat_image(40)
        brightened = normalize_brightness(dark, brightness=40 / 2.55)
        assert np.asarray(brightened).mean() > np.asarray(dark).mean()

    def test_brightness_gain_floors_zero(self):
        black = flat_image(0)
        result = normalize_brightness(black, brightness=0)
        assert result.size == black.size
