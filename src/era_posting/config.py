"""Configuration models for ERA decoding and payment posting.

All tunable behavior is controlled via Pydantic models defined here.
Configuration is the single source of truth for delimiters, tolerances, and
output locations.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class DecoderConfig(BaseModel):
    """Settings for the 835 decoder."""

    detect_delimiters: bool = Field(
        default=True, description="Read delimiters from the ISA header before segmenting"
    )
    element_separator: str = Field(default="*", min_length=1, max_length=1)
    segment_terminator: str = Field(default="~", min_length=1, max_length=1)
    component_separator: str = Field(default=":", min_length=1, max_length=1)
    two_digit_year_pivot: int = Field(
        default=50, description="YY above this value resolves to 19YY, otherwise 20YY"
    )


class PostingConfig(BaseModel):
    """Thresholds for payment posting and reconciliation."""

    paid_tolerance_ratio: float = Field(
        default=0.95,
        gt=0,
        le=1,
        description="Paid/billed ratio at or above which an ERA claim counts as fully paid",
    )
    balance_tolerance: float = Field(
        default=0.01, ge=0, description="Largest variance (USD) still treated as balanced"
    )
    era_payment_method: str = Field(
        default="ERA Auto-Post", description="payment_method stamped on ERA postings"
    )
    fuzzy_match_base_score: float = Field(
        default=0.6, description="Score for a last-name + statement-date candidate"
    )
    fuzzy_match_first_name_bonus: float = Field(default=0.2)
    fuzzy_match_billed_amount_bonus: float = Field(default=0.2)


class PipelineConfig(BaseModel):
    """Top-level configuration for ERA processing."""

    output_dir: Path = Field(default=Path("output"), description="Root output directory")
    actor_id: str = Field(default="system", description="User recorded on postings")

    # Sub-configs
    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    posting: PostingConfig = Field(default_factory=PostingConfig)
