"""Non-AI last-resort extraction: plain OCR plus keyword field scraping."""

import logging
import re
import time
from datetime import datetime

from receipt_cascade.integrations.base import OCREngine
from receipt_cascade.models import ExtractionCandidate, QualityMetrics

logger = logging.getLogger(__name__)

LAST_RESORT_CONFIDENCE = 30.0
UNKNOWN_VENDOR = "Unknown Vendor"
MAX_AMOUNT = 99999.0

KNOWN_VENDORS = {
    "HOME DEPOT": "The Home Depot",
    "HOMEDEPOT": "The Home Depot",
    "WALMART": "Walmart",
    "WAL-MART": "Walmart",
    "LOWE'S": "Lowe's",
    "LOWES": "Lowe's",
    "COSTCO": "Costco",
    "TARGET": "Target",
}

AMOUNT_PATTERN = re.compile(r"\$?\s*(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})(?!\d)")
SUBTOTAL_PATTERN = re.compile(
    r"\b(sub\s*-?\s*total|net\s+amount|before\s+tax|merchandise\s+total)\b", re.I
)
TAX_PATTERN = re.compile(r"\b(tax|gst|hst|pst|vat|tx)\b", re.I)
TOTAL_PATTERN = re.compile(
    r"\b(total|amount\s+due|balance\s+due|you\s+owe|amount\s+paid|total\s+sale)\b", re.I
)
PAYMENT_PATTERN = re.compile(
    r"\b(change|cash|tender(?:ed)?|visa|mastercard|amex|debit|credit|savings|discount)\b",
    re.I,
)

# (pattern, strptime formats tried in order)
DATE_PATTERNS = [
    (re.compile(r"\b(\d{4}[/-]\d{1,2}[/-]\d{1,2})\b"), ("%Y-%m-%d", "%Y/%m/%d")),
    (
        re.compile(r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})\b"),
        ("%m/%d/%y", "%m-%d-%y", "%m/%d/%Y", "%m-%d-%Y", "%d/%m/%y", "%d/%m/%Y", "%d-%m-%Y"),
    ),
    (
        re.compile(
            r"\b((?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
            re.I,
        ),
        ("%b %d %Y", "%B %d %Y"),
    ),
]


def extract_vendor(lines: list[str]) -> str:
    """First substantial, non-numeric line among the first five."""
    for line in lines[:5]:
        if len(line) < 3 or re.fullmatch(r"[\d/\-]+", line):
            continue
        upper = line.upper()
        for marker, vendor in KNOWN_VENDORS.items():
            if marker in upper:
                return vendor
        if len(line) > 3 and not re.fullmatch(r"[\d$.,\s]+", line):
            return line
    return UNKNOWN_VENDOR


def _parse_date(raw: str, formats: tuple[str, ...]) -> str | None:
    cleaned = re.sub(r"[,.]", " ", raw)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    for fmt in formats:
        candidate = cleaned if " " in fmt else raw
        try:
            return datetime.strptime(candidate, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def extract_date(lines: list[str]) -> str:
    """First recognisable date as ``YYYY-MM-DD``; empty string when none."""
    for line in lines:
        for pattern, formats in DATE_PATTERNS:
            match = pattern.search(line)
            if not match:
                continue
            parsed = _parse_date(match.group(1), formats)
            if parsed:
                return parsed
    return ""


def _line_amount(line: str) -> float | None:
    """Rightmost plausible amount on a line."""
    amounts = [float(m.group(1).replace(",", "")) for m in AMOUNT_PATTERN.finditer(line)]
    amounts = [a for a in amounts if 0 < a <= MAX_AMOUNT]
    return amounts[-1] if amounts else None


def extract_amounts(lines: list[str]) -> tuple[float, float, float]:
    """
    Scrape keyword-labelled amounts.

    Returns:
        Tuple of (total, subtotal, tax); 0.0 for anything not found
    """
    totals: list[float] = []
    subtotals: list[float] = []
    taxes: list[float] = []
    unlabelled: list[float] = []

    for line in lines:
        amount = _line_amount(line)
        if amount is None:
            continue
        if SUBTOTAL_PATTERN.search(line):
            subtotals.append(amount)
        elif TAX_PATTERN.search(line):
            taxes.append(amount)
        elif TOTAL_PATTERN.search(line):
            totals.append(amount)
        elif not PAYMENT_PATTERN.search(line):
            unlabelled.append(amount)

    subtotal = subtotals[0] if subtotals else 0.0
    tax = taxes[0] if taxes else 0.0

    if totals:
        total = max(totals)
    elif subtotal > 0:
        total = subtotal + tax
    else:
        reasonable = [a for a in unlabelled if a > 1]
        total = max(reasonable) if reasonable else 0.0

    if total > 0 and subtotal > total:
        subtotal = total

    return round(total, 2), round(subtotal, 2), round(tax, 2)


class LastResortExtractor:
    """Deterministic OCR-based extraction used when every AI route failed."""

    def __init__(self, engine: OCREngine, confidence: float = LAST_RESORT_CONFIDENCE) -> None:
        self.engine = engine
        self.confidence = confidence

    @property
    def route_name(self) -> str:
        return f"{self.engine.name}-fallback"

    def parse_text(
        self,
        text: str,
        metrics: QualityMetrics | None = None,
        processing_time_ms: float = 0.0,
    ) -> ExtractionCandidate:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        total, subtotal, tax = extract_amounts(lines)
        return ExtractionCandidate(
            vendor=extract_vendor(lines),
            date=extract_date(lines),
            total_amount=total,
            subtotal=subtotal,
            tax=tax,
            currency="USD",
            line_items=[],
            category="Other",
            confidence=self.confidence,
            processing_time_ms=processing_time_ms,
            route_name=self.route_name,
            cost_estimate=0.0,
            quality_metrics=metrics,
            raw_text=text,
        )

    def extract(self, image: bytes, metrics: QualityMetrics | None = None) -> ExtractionCandidate:
        """
        Run OCR on ``image`` and scrape receipt fields from the text.

        Raises:
            ProviderInvocationError: If the OCR engine fails
            ImageDecodeError: If the engine cannot read the image
        """
        start = time.perf_counter()
        text = self.engine.extract_text(image)
        elapsed_ms = (time.perf_counter() - start) * 1000
        candidate = self.parse_text(text, metrics, elapsed_ms)
        logger.info(
            "Last resort %s extracted '%s' total=%.2f",
            self.route_name,
            candidate.vendor,
            candidate.total_amount,
        )
        return candidate
