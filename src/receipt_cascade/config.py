"""Pipeline settings and their environment-variable overrides."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from receipt_cascade.models import AccountTier

ENV_PREFIX = "RECEIPT_CASCADE_"

# Per-request cost ceilings by account tier; None means unrestricted.
DEFAULT_TIER_CEILINGS: dict[AccountTier, float | None] = {
    AccountTier.FREE: 0.002,
    AccountTier.PRO: 0.005,
    AccountTier.ENTERPRISE: None,
}


class PipelineSettings(BaseModel):
    """Tunable thresholds and limits for the extraction cascade.

    The confidence thresholds are kept at the values the cascade was
    calibrated with; they are exposed here so they can be tuned against real
    provider behaviour without touching code.
    """

    model_config = ConfigDict(frozen=True)

    acceptance_threshold: float = Field(60.0, ge=0.0, le=100.0)
    fusion_threshold: float = Field(85.0, ge=0.0, le=100.0)
    fusion_confidence_cap: float = Field(95.0, ge=0.0, le=100.0)
    last_resort_confidence: float = Field(30.0, ge=0.0, le=100.0)
    numeric_agreement_tolerance: float = Field(0.05, ge=0.0)
    item_match_threshold: float = Field(0.7, ge=0.0, le=1.0)

    daily_limit: float = Field(5.0, ge=0.0)
    tier_ceilings: dict[AccountTier, float | None] = Field(
        default_factory=lambda: dict(DEFAULT_TIER_CEILINGS)
    )

    attempt_timeout_s: float = Field(30.0, gt=0.0)
    last_resort_reserve_s: float = Field(5.0, ge=0.0)

    analysis_max_dimension: int = Field(1000, ge=3)
    text_gradient_threshold: float = Field(30.0, ge=0.0)

    routes_file: Path | None = None
    last_resort_engine: str = "tesseract"

    @classmethod
    def from_env(cls, **overrides) -> "PipelineSettings":
        """Build settings from ``RECEIPT_CASCADE_*`` environment variables.

        Keyword overrides win over the environment. Unknown variables are
        ignored and invalid values surface as a pydantic ``ValidationError``.

        Example:
            RECEIPT_CASCADE_DAILY_LIMIT=10 RECEIPT_CASCADE_ROUTES_FILE=routes.json
        """
        values: dict[str, object] = {}
        for field_name in cls.model_fields:
            if field_name == "tier_ceilings":
                continue
            raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()

        ceilings = dict(DEFAULT_TIER_CEILINGS)
        for tier in AccountTier:
            raw = os.getenv(f"{ENV_PREFIX}{tier.value.upper()}_MAX_COST")
            if raw is None or not raw.strip():
                continue
            ceilings[tier] = None if raw.strip().lower() == "none" else float(raw)
        values["tier_ceilings"] = ceilings

        values.update(overrides)
        return cls.model_validate(values)

    def ceiling_for(self, tier: AccountTier) -> float | None:
        return self.tier_ceilings.get(tier)
