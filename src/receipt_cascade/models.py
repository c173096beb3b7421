"""Data models for receipt extraction and processing."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from receipt_cascade.errors import ReceiptCascadeError


class ComplexityTier(StrEnum):
    """Processing complexity derived from image quality."""

    SIMPLE = "simple"
    STANDARD = "standard"
    COMPLEX = "complex"


class AccountTier(StrEnum):
    """Account tier of the caller; bounds the per-request route cost."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class QualityMetrics(BaseModel):
    """Perceptual quality metrics computed once per image."""

    model_config = ConfigDict(frozen=True)

    sharpness: float = Field(ge=0.0, le=100.0)
    contrast: float = Field(ge=0.0, le=100.0)
    brightness: float = Field(ge=0.0, le=100.0)
    text_density: float = Field(ge=0.0, le=100.0)
    overall_score: float = Field(ge=0.0, le=100.0)
    processing_route: ComplexityTier
    estimated_line_items: int = Field(ge=1)


class ProcessingRoute(BaseModel):
    """A (provider, model) pairing with its cost and accuracy profile."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    cost_per_request: float = Field(ge=0.0)
    expected_accuracy: float = Field(ge=0.0, le=100.0)
    average_latency_ms: int = Field(ge=0)
    description: str = ""


class LineItem(BaseModel):
    """Individual line item on a receipt."""

    model_config = ConfigDict(frozen=True)

    description: str
    quantity: float = 1.0
    unit_price: float = 0.0
    total_price: float = 0.0
    category: str | None = None
    confidence: float | None = None


class ExtractionCandidate(BaseModel):
    """Structured receipt data produced by one extraction attempt.

    Stages never modify a candidate in place; they return a copy built with
    ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    vendor: str
    date: str = ""  # YYYY-MM-DD format, empty when unknown
    total_amount: float
    subtotal: float = 0.0
    tax: float = 0.0
    currency: str = "USD"
    line_items: list[LineItem] = Field(default_factory=list)
    category: str = "Other"
    confidence: float = Field(ge=0.0, le=100.0)
    processing_time_ms: float = 0.0
    route_name: str
    cost_estimate: float = 0.0
    quality_metrics: QualityMetrics | None = None
    raw_text: str | None = None


class ProviderLineItem(BaseModel):
    """Line item as returned by an AI provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)

    description: str = ""
    quantity: float | None = None
    unit_price: float | None = Field(None, alias="unitPrice")
    total_price: float | None = Field(None, alias="totalPrice")
    category: str | None = None

    def to_line_item(self) -> LineItem:
        return LineItem(
            description=self.description.strip(),
            quantity=self.quantity or 1.0,
            unit_price=self.unit_price or 0.0,
            total_price=self.total_price or 0.0,
            category=self.category,
        )


class ProviderReceipt(BaseModel):
    """Schema for the untrusted JSON payload returned by an AI provider.

    ``vendor`` and a numeric ``totalAmount`` are required; a payload missing
    either is rejected instead of being partially populated.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)

    vendor: str = Field(min_length=1)
    date: str | None = None
    total_amount: float = Field(alias="totalAmount", strict=True)
    subtotal: float | None = None
    tax: float | None = None
    currency: str | None = None
    line_items: list[ProviderLineItem] = Field(default_factory=list, alias="lineItems")
    category: str | None = None
    confidence: float = 0.0

    @field_validator("vendor")
    @classmethod
    def _vendor_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("vendor must not be blank")
        return value

    @field_validator("line_items", mode="before")
    @classmethod
    def _null_items(cls, value):
        return [] if value is None else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return 0.0
        return min(100.0, max(0.0, float(value)))

    def to_candidate(
        self,
        route: ProcessingRoute,
        metrics: QualityMetrics | None,
        processing_time_ms: float,
    ) -> ExtractionCandidate:
        return ExtractionCandidate(
            vendor=self.vendor,
            date=self.date or "",
            total_amount=self.total_amount,
            subtotal=self.subtotal or 0.0,
            tax=self.tax or 0.0,
            currency=self.currency or "USD",
            line_items=[item.to_line_item() for item in self.line_items],
            category=self.category or "Other",
            confidence=self.confidence,
            processing_time_ms=processing_time_ms,
            route_name=route.name,
            cost_estimate=route.cost_per_request,
            quality_metrics=metrics,
        )


class ExtractionResult(BaseModel):
    """Outcome of one ``process_receipt`` request."""

    success: bool
    data: ExtractionCandidate | None = None
    error: str | None = None
    fallback_used: bool = False
    total_cost: float = 0.0
    processing_time_ms: float = 0.0
    routes_attempted: list[str] = Field(default_factory=list)

    @classmethod
    def from_error(
        cls, error: ReceiptCascadeError, processing_time_ms: float = 0.0
    ) -> "ExtractionResult":
        """Build a labelled failure from one of the fatal pipeline errors."""
        return cls(
            success=False,
            error=str(error),
            fallback_used=bool(error.details.get("fallback_used", False)),
            total_cost=float(error.details.get("total_cost", 0.0)),
            processing_time_ms=processing_time_ms,
            routes_attempted=list(error.details.get("routes_attempted", [])),
        )
