"""Unit tests for candidate fusion and line-item reconciliation."""

import pytest

from receipt_cascade.fusion import (
    FusionEngine,
    fuse_candidates,
    fuse_line_items,
    fuse_numeric,
    item_similarity,
    levenshtein,
    merge_line_items,
    normalize_description,
)
from receipt_cascade.models import AccountTier, ComplexityTier, LineItem
from tests.utils import make_candidate, make_metrics

pytestmark = pytest.mark.unit


def item(description: str, total: float, **kwargs) -> LineItem:
    return LineItem(description=description, total_price=total, **kwargs)


class TestStringSimilarity:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ("", "", 0),
            ("abc", "", 3),
            ("kitten", "sitting", 3),
            ("coffee", "cofee", 1),
            ("same", "same", 0),
        ],
    )
    def test_levenshtein(self, a, b, expected):
        assert levenshtein(a, b) == expected
        assert levenshtein(b, a) == expected

    def test_normalize_description(self):
        assert normalize_description("  Café Latte (L)!  ") == "caf latte l"


class TestItemSimilarity:
    def test_typo_with_same_price_matches(self):
        similarity = item_similarity(item("Coffee", 3.50), item("Cofee", 3.50))
        assert similarity > 0.7
        assert similarity == pytest.approx(0.7 * (1 - 1 / 6) + 0.3)

    def test_different_items_do_not_match(self):
        assert item_similarity(item("Coffee", 3.50), item("Bagel", 2.25)) < 0.7

    def test_empty_descriptions_never_match(self):
        assert item_similarity(item("!!", 1.0), item("--", 1.0)) == 0

    def test_zero_prices_are_identical(self):
        assert item_similarity(item("Water", 0), item("Water", 0)) == pytest.approx(1.0)


class TestNumericFusion:
    def test_close_values_are_weighted(self):
        fused = fuse_numeric(42.00, 42.50, 0.70, 0.90)
        assert fused == pytest.approx((42.00 * 0.7 + 42.50 * 0.9) / 1.6)
        assert fused == pytest.approx(42.28, abs=0.01)

    def test_divergent_values_use_stronger_candidate(self):
        assert fuse_numeric(40, 80, 0.70, 0.90) == 80
        assert fuse_numeric(40, 80, 0.90, 0.70) == 40

    def test_zero_handling(self):
        assert fuse_numeric(0, 0, 0.5, 0.5) == 0
        assert fuse_numeric(0, 12.5, 0.9, 0.1) == 12.5
        assert fuse_numeric(12.5, 0, 0.1, 0.9) == 12.5

    def test_zero_weights_average(self):
        assert fuse_numeric(10.0, 10.2, 0, 0) == pytest.approx(10.1)


class TestLineItemFusion:
    def test_similar_items_merge(self):
        fused = fuse_line_items([item("Coffee", 3.50)], [item("Cofee", 3.50)])
        assert len(fused) == 1
        assert fused[0].description == "Coffee"

    def test_unmatched_items_are_kept(self):
        a = [item("Coffee", 3.50), item("Muffin", 3.00)]
        b = [item("Cofee", 3.50), item("Orange Juice", 4.25)]
        fused = fuse_line_items(a, b)
        assert [i.description for i in fused] == ["Coffee", "Muffin", "Orange Juice"]

    def test_one_side_empty(self):
        b = [item("Tea", 2.0)]
        assert fuse_line_items([], b) == b
        assert fuse_line_items(b, []) == b

    def test_each_item_matches_at_most_once(self):
        a = [item("Coffee", 3.50), item("Coffee", 3.50)]
        b = [item("Coffee", 3.50)]
        assert len(fuse_line_items(a, b)) == 2

    def test_item_count_bounds(self):
        a = [item("Coffee", 3.5), item("Muffin", 3.0), item("Tea", 2.0)]
        b = [item("Cofee", 3.5), item("Scone", 2.75)]
        fused = fuse_line_items(a, b)
        assert max(len(a), len(b)) <= len(fused) <= len(a) + len(b)

    def test_merge_prefers_longer_description_and_nonzero_fields(self):
        merged = merge_line_items(
            LineItem(description="Cof", quantity=0, unit_price=0, total_price=3.5),
            LineItem(description="Coffee", quantity=1, unit_price=3.5, total_price=3.4, category="Meals"),
        )
        assert merged.description == "Coffee"
        assert merged.quantity == 1
        assert merged.unit_price == 3.5
        assert merged.total_price == 3.5
        assert merged.category == "Meals"
        assert merged.confidence == 75

    def test_merge_confidence_is_capped(self):
        merged = merge_line_items(
            item("Coffee", 3.5, confidence=100), item("Coffee", 3.5, confidence=98)
        )
        assert merged.confidence == 95


class TestFuseCandidates:
    def test_fused_fields(self):
        primary = make_candidate(
            vendor="Corner Cafe",
            total_amount=42.00,
            confidence=70,
            route_name="gpt-4o",
            cost_estimate=0.005,
            processing_time_ms=100,
            quality_metrics=make_metrics(),
        )
        secondary = make_candidate(
            vendor="CORNER CAFE LLC",
            total_amount=42.50,
            confidence=90,
            route_name="claude-haiku-4-5",
            cost_estimate=0.0015,
            processing_time_ms=200,
        )

        fused = fuse_candidates(primary, secondary)

        assert fused.vendor == "CORNER CAFE LLC"
        assert fused.total_amount == pytest.approx(42.28, abs=0.01)
        assert fused.route_name == "fusion:gpt-4o+claude-haiku-4-5"
        assert fused.cost_estimate == pytest.approx(0.0065)
        assert fused.processing_time_ms == 300
        assert fused.quality_metrics == primary.quality_metrics

    def test_empty_scalar_falls_back_to_other(self):
        fused = fuse_candidates(
            make_candidate(date="", confidence=90),
            make_candidate(date="2024-01-02", confidence=70),
        )
        assert fused.date == "2024-01-02"

    @pytest.mark.parametrize("c1, c2", [(70, 90), (10, 100), (84, 84), (100, 100), (60, 61)])
    def test_confidence_between_inputs_and_capped(self, c1, c2):
        fused = fuse_candidates(make_candidate(confidence=c1), make_candidate(confidence=c2))
        assert min(c1, c2, 95) - 1e-9 <= fused.confidence <= min(95, max(c1, c2)) + 1e-9
        assert fused.confidence <= 95

    def test_confidence_formula(self):
        fused = fuse_candidates(make_candidate(confidence=70), make_candidate(confidence=90))
        assert fused.confidence == pytest.approx((70 * 0.7 + 90 * 0.9) / 1.6)


class TestFusionEngine:
    @pytest.fixture
    def engine(self):
        return FusionEngine()

    def test_should_fuse_complex_paid_marginal(self, engine):
        metrics = make_metrics(processing_route=ComplexityTier.COMPLEX)
        candidate = make_candidate(confidence=70)
        assert engine.should_fuse(candidate, metrics, AccountTier.PRO)

    @pytest.mark.parametrize(
        "route, tier, confidence, last_resort",
        [
            (ComplexityTier.STANDARD, AccountTier.PRO, 70, False),
            (ComplexityTier.COMPLEX, AccountTier.FREE, 70, False),
            (ComplexityTier.COMPLEX, AccountTier.PRO, 85, False),
            (ComplexityTier.COMPLEX, AccountTier.ENTERPRISE, 30, True),
        ],
    )
    def test_should_not_fuse(self, engine, route, tier, confidence, last_resort):
        metrics = make_metrics(processing_route=route)
        candidate = make_candidate(confidence=confidence)
        assert not engine.should_fuse(candidate, metrics, tier, from_last_resort=last_resort)

    def test_combine_without_secondary(self, engine):
        primary = make_candidate()
        assert engine.combine(primary, None) is primary

    def test_combine_ignores_weak_secondary(self, engine):
        primary = make_candidate(confidence=70)
        assert engine.combine(primary, make_candidate(confidence=40)) is primary

    def test_combine_fuses(self, engine):
        fused = engine.combine(
            make_candidate(confidence=70, route_name="gpt-4o"),
            make_candidate(confidence=80, route_name="claude-haiku-4-5"),
        )
        assert fused.route_name == "fusion:gpt-4o+claude-haiku-4-5"
