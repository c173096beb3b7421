"""Unit tests for image decoding and quality analysis."""

import pytest
from PIL import Image

from receipt_cascade.errors import ImageDecodeError
from receipt_cascade.imaging.analyzer import (
    analyze_image_bytes,
    analyze_quality,
    build_metrics,
    calculate_overall_score,
    classify_route,
    decode_image,
    effective_brightness,
    estimate_line_items,
    to_luminance,
)
from receipt_cascade.models import ComplexityTier
from tests.utils import flat_image, noise_image, png_bytes, receipt_image

pytestmark = pytest.mark.unit


class TestDecodeImage:
    def test_decodes_png_to_rgb(self):
        image = decode_image(png_bytes(Image.new("L", (10, 12), 200)))
        assert image.mode == "RGB"
        assert image.size == (10, 12)

    def test_empty_payload_raises(self):
        with pytest.raises(ImageDecodeError) as exc_info:
            decode_image(b"")
        assert "empty" in str(exc_info.value).lower()

    def test_garbage_payload_raises(self):
        with pytest.raises(ImageDecodeError) as exc_info:
            decode_image(b"definitely not an image")
        assert exc_info.value.details["size"] == len(b"definitely not an image")


class TestScoring:
    def test_effective_brightness_peaks_at_midpoint(self):
        assert effective_brightness(50) == 50
        assert effective_brightness(100) == pytest.approx(50)
        assert effective_brightness(0) == 0
        assert effective_brightness(75) == pytest.approx(56.25)

    def test_overall_score_uses_weighted_formula(self):
        # 0.3*80 + 0.3*75 + 0.2*50 + 0.2*15
        assert calculate_overall_score(80, 75, 50, 15) == pytest.approx(59.5)

    @pytest.mark.parametrize(
        "overall, density, expected",
        [
            (76, 15, ComplexityTier.SIMPLE),
            (70, 30, ComplexityTier.SIMPLE),
            (75, 40, ComplexityTier.STANDARD),
            (59.5, 15, ComplexityTier.STANDARD),
            (40, 50, ComplexityTier.STANDARD),
            (40, 60, ComplexityTier.COMPLEX),
        ],
    )
    def test_classify_route(self, overall, density, expected):
        assert classify_route(overall, density) == expected

    def test_estimated_line_items_never_below_one(self):
        assert estimate_line_items(0) == 1
        assert estimate_line_items(9.9) == 1
        assert estimate_line_items(25) == 2
        assert estimate_line_items(100) == 10

    def test_build_metrics_from_raw_values(self):
        metrics = build_metrics(sharpness=80, contrast=75, brightness=50, text_density=15)
        assert metrics.overall_score == pytest.approx(59.5)
        assert metrics.processing_route == ComplexityTier.STANDARD
        assert metrics.estimated_line_items == 1


class TestAnalyzeQuality:
    def test_flat_image_has_no_detail(self):
        metrics = analyze_quality(flat_image(128))
        assert metrics.sharpness == 0
        assert metrics.contrast == 0
        assert metrics.text_density == 0
        assert metrics.brightness == pytest.approx(128 / 2.55)
        assert metrics.estimated_line_items == 1
        assert metrics.processing_route == ComplexityTier.STANDARD

    def test_receipt_like_image_has_contrast_and_edges(self):
        metrics = analyze_quality(receipt_image())
        assert metrics.contrast > 20
        assert metrics.text_density > 0
        assert metrics.sharpness > 0
        assert 0 <= metrics.overall_score <= 100

    def test_noise_is_dense_and_complex(self):
        metrics = analyze_quality(noise_image())
        assert metrics.text_density == 100
        assert metrics.sharpness == 100
        assert metrics.estimated_line_items == 10

    def test_tiny_image_yields_zero_sharpness_and_density(self):
        metrics = analyze_quality(Image.new("RGB", (2, 2), (10, 200, 30)))
        assert metrics.sharpness == 0
        assert metrics.text_density == 0

    def test_large_image_is_bounded_before_analysis(self, mocker):
        spy = mocker.spy(Image.Image, "thumbnail")
        analyze_quality(flat_image(200, size=(3000, 400)), max_dimension=1000)
        assert spy.call_count == 1

    def test_input_image_is_not_modified(self):
        image = receipt_image(size=(1200, 1600))
        analyze_quality(image, max_dimension=500)
        assert image.size == (1200, 1600)

    def test_analyze_image_bytes(self):
        metrics = analyze_image_bytes(png_bytes(flat_image(255)))
        assert metrics.brightness == pytest.approx(100)

    def test_luminance_weights(self):
        grey = to_luminance(Image.new("RGB", (1, 1), (100, 200, 50)))
        assert grey[0, 0] == round(0.299 * 100 + 0.587 * 200 + 0.114 * 50)
