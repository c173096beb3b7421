"""Arithmetic reconciliation and confidence adjustment of a final candidate."""

import logging

from receipt_cascade.models import ExtractionCandidate

logger = logging.getLogger(__name__)

TOLERANCE = 0.01
NO_ITEMS_CONFIDENCE_CAP = 50.0
NO_VENDOR_CONFIDENCE_CAP = 60.0
UNKNOWN_VENDOR = "Unknown Vendor"


def post_process(candidate: ExtractionCandidate) -> ExtractionCandidate:
    """
    Make subtotal, tax and total consistent and cap confidence on weak results.

    Rules, applied in order:
        1. With line items, subtotal becomes the sum of item totals when it is
           missing or off by more than a cent.
        2. Without line items, a missing subtotal becomes total minus tax.
        3. When subtotal + tax still misses the total by a cent or more,
           tax absorbs the difference.
        4. Confidence is capped at 50 without line items and at 60 without a
           vendor.

    Returns:
        A new candidate; the input is left untouched
    """
    total = round(candidate.total_amount, 2)
    subtotal = round(candidate.subtotal, 2)
    tax = round(candidate.tax, 2)
    confidence = candidate.confidence

    if candidate.line_items:
        calculated = round(sum(item.total_price for item in candidate.line_items), 2)
        if not subtotal or abs(subtotal - calculated) > TOLERANCE:
            logger.debug("Subtotal %.2f replaced by item sum %.2f", subtotal, calculated)
            subtotal = calculated
    elif not subtotal:
        subtotal = round(total - tax, 2)

    if round(total - (subtotal + tax), 2) != 0:
        adjusted = round(total - subtotal, 2)
        logger.debug("Tax %.2f adjusted to %.2f to match total %.2f", tax, adjusted, total)
        tax = adjusted

    if not candidate.line_items:
        confidence = min(confidence, NO_ITEMS_CONFIDENCE_CAP)

    if not candidate.vendor or candidate.vendor == UNKNOWN_VENDOR:
        confidence = min(confidence, NO_VENDOR_CONFIDENCE_CAP)

    return candidate.model_copy(
        update={
            "total_amount": total,
            "subtotal": subtotal,
            "tax": tax,
            "confidence": confidence,
        }
    )
