"""Confidence-weighted fusion of two independent extraction candidates."""

import logging
import re

from receipt_cascade.models import (
    AccountTier,
    ComplexityTier,
    ExtractionCandidate,
    LineItem,
    QualityMetrics,
)

logger = logging.getLogger(__name__)

FUSION_THRESHOLD = 85.0
CONFIDENCE_CAP = 95.0
NUMERIC_TOLERANCE = 0.05
MATCH_THRESHOLD = 0.7
DEFAULT_ITEM_CONFIDENCE = 75.0

TEXT_WEIGHT = 0.7
PRICE_WEIGHT = 0.3

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def levenshtein(s1: str, s2: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def normalize_description(description: str) -> str:
    return _NON_ALNUM.sub("", description.lower()).strip()


def price_similarity(a: float, b: float) -> float:
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 1.0
    return 1.0 - min(1.0, abs(a - b) / largest)


def item_similarity(a: LineItem, b: LineItem) -> float:
    """
    Similarity of two line items in [0, 1].

    Weighted 0.7 on normalized description edit distance and 0.3 on total
    price. Items whose normalized descriptions are both empty never match.
    """
    desc_a = normalize_description(a.description)
    desc_b = normalize_description(b.description)
    max_len = max(len(desc_a), len(desc_b))
    if max_len == 0:
        return 0.0

    text = 1.0 - levenshtein(desc_a, desc_b) / max_len
    return text * TEXT_WEIGHT + price_similarity(a.total_price, b.total_price) * PRICE_WEIGHT


def fuse_numeric(
    a: float,
    b: float,
    weight_a: float,
    weight_b: float,
    tolerance: float = NUMERIC_TOLERANCE,
) -> float:
    """Weighted average when values agree within ``tolerance``, else the stronger one."""
    if not a and not b:
        return 0.0
    if not a:
        return b
    if not b:
        return a

    if abs(a - b) / max(abs(a), abs(b)) <= tolerance:
        if weight_a + weight_b == 0:
            return (a + b) / 2
        return (a * weight_a + b * weight_b) / (weight_a + weight_b)

    return a if weight_a >= weight_b else b


def merge_line_items(a: LineItem, b: LineItem) -> LineItem:
    confidence_a = a.confidence if a.confidence is not None else DEFAULT_ITEM_CONFIDENCE
    confidence_b = b.confidence if b.confidence is not None else DEFAULT_ITEM_CONFIDENCE
    return LineItem(
        description=a.description if len(a.description) >= len(b.description) else b.description,
        quantity=a.quantity or b.quantity,
        unit_price=a.unit_price or b.unit_price,
        total_price=a.total_price or b.total_price,
        category=a.category or b.category,
        confidence=min(CONFIDENCE_CAP, (confidence_a + confidence_b) / 2),
    )


def fuse_line_items(
    items_a: list[LineItem],
    items_b: list[LineItem],
    threshold: float = MATCH_THRESHOLD,
) -> list[LineItem]:
    """
    Greedy one-to-one reconciliation of two item lists.

    Each item of ``items_a`` is merged with its most similar unmatched item of
    ``items_b`` when the similarity exceeds ``threshold``. Unmatched items of
    both lists are kept, so the result never has fewer items than the longer
    input nor more than both combined.
    """
    if not items_a:
        return list(items_b)
    if not items_b:
        return list(items_a)

    used = [False] * len(items_b)
    fused: list[LineItem] = []

    for item in items_a:
        best_index = -1
        best_similarity = 0.0
        for index, other in enumerate(items_b):
            if used[index]:
                continue
            similarity = item_similarity(item, other)
            if similarity > threshold and similarity > best_similarity:
                best_index = index
                best_similarity = similarity

        if best_index >= 0:
            used[best_index] = True
            fused.append(merge_line_items(item, items_b[best_index]))
        else:
            fused.append(item)

    fused.extend(other for index, other in enumerate(items_b) if not used[index])
    return fused


def _pick(primary: str, secondary: str, primary_wins: bool) -> str:
    preferred, other = (primary, secondary) if primary_wins else (secondary, primary)
    return preferred or other


def fuse_candidates(
    primary: ExtractionCandidate,
    secondary: ExtractionCandidate,
    tolerance: float = NUMERIC_TOLERANCE,
    match_threshold: float = MATCH_THRESHOLD,
    confidence_cap: float = CONFIDENCE_CAP,
) -> ExtractionCandidate:
    """
    Merge two candidates for the same receipt.

    Scalars come from the higher-confidence candidate (the primary on ties),
    numeric fields are fused with ``fuse_numeric`` and line items are
    reconciled with ``fuse_line_items``. The fused confidence is the
    confidence-weighted mean of both inputs, capped at ``confidence_cap``.
    """
    weight_p = primary.confidence / 100
    weight_s = secondary.confidence / 100
    primary_wins = primary.confidence >= secondary.confidence

    if weight_p + weight_s > 0:
        confidence = (
            primary.confidence * weight_p + secondary.confidence * weight_s
        ) / (weight_p + weight_s)
    else:
        confidence = 0.0

    return ExtractionCandidate(
        vendor=_pick(primary.vendor, secondary.vendor, primary_wins),
        date=_pick(primary.date, secondary.date, primary_wins),
        total_amount=fuse_numeric(
            primary.total_amount, secondary.total_amount, weight_p, weight_s, tolerance
        ),
        subtotal=fuse_numeric(primary.subtotal, secondary.subtotal, weight_p, weight_s, tolerance),
        tax=fuse_numeric(primary.tax, secondary.tax, weight_p, weight_s, tolerance),
        currency=_pick(primary.currency, secondary.currency, primary_wins),
        line_items=fuse_line_items(primary.line_items, secondary.line_items, match_threshold),
        category=_pick(primary.category, secondary.category, primary_wins),
        confidence=min(confidence_cap, confidence),
        processing_time_ms=primary.processing_time_ms + secondary.processing_time_ms,
        route_name=f"fusion:{primary.route_name}+{secondary.route_name}",
        cost_estimate=primary.cost_estimate + secondary.cost_estimate,
        quality_metrics=primary.quality_metrics,
        raw_text=primary.raw_text or secondary.raw_text,
    )


class FusionEngine:
    """Decides when a second opinion is worth paying for and merges the two."""

    def __init__(
        self,
        fusion_threshold: float = FUSION_THRESHOLD,
        acceptance_threshold: float = 60.0,
        confidence_cap: float = CONFIDENCE_CAP,
        tolerance: float = NUMERIC_TOLERANCE,
        match_threshold: float = MATCH_THRESHOLD,
    ) -> None:
        self.fusion_threshold = fusion_threshold
        self.acceptance_threshold = acceptance_threshold
        self.confidence_cap = confidence_cap
        self.tolerance = tolerance
        self.match_threshold = match_threshold

    def should_fuse(
        self,
        candidate: ExtractionCandidate,
        metrics: QualityMetrics,
        tier: AccountTier,
        from_last_resort: bool = False,
    ) -> bool:
        """Complex receipts on paid tiers whose AI result is below the fusion threshold."""
        return (
            metrics.processing_route == ComplexityTier.COMPLEX
            and tier != AccountTier.FREE
            and not from_last_resort
            and candidate.confidence < self.fusion_threshold
        )

    def combine(
        self, primary: ExtractionCandidate, secondary: ExtractionCandidate | None
    ) -> ExtractionCandidate:
        """Fuse ``secondary`` into ``primary``; weak or missing secondaries are ignored."""
        if secondary is None:
            logger.info("No secondary result; keeping %s", primary.route_name)
            return primary
        if secondary.confidence < self.acceptance_threshold:
            logger.info(
                "Secondary %s below acceptance (%.0f); keeping %s",
                secondary.route_name,
                secondary.confidence,
                primary.route_name,
            )
            return primary

        fused = fuse_candidates(
            primary,
            secondary,
            tolerance=self.tolerance,
            match_threshold=self.match_threshold,
            confidence_cap=self.confidence_cap,
        )
        logger.info(
            "Fused %s and %s: confidence %.1f, %d line items",
            primary.route_name,
            secondary.route_name,
            fused.confidence,
            len(fused.line_items),
        )
        return fused
