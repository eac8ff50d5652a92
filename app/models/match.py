# app/models/match.py

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Response models serialize with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# Confidence tiers
# ============================================

Confidence = Literal["high", "medium", "low", "none"]
MatchConfidence = Literal["high", "medium", "low"]

CONFIDENCE_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1, "none": 0}


def confidence_rank(confidence: str) -> int:
    return CONFIDENCE_RANK.get(confidence, 0)


# ============================================
# Match results
# ============================================

class MatchResult(ApiModel):
    """
    The proposed counterpart for one source record.

    Produced fresh on every preview; only its effect (a link) is persisted.
    """

    source_id: str
    candidate_id: Optional[str] = None
    confidence: Confidence
    reason: str
    date_diff_days: Optional[float] = None
    amount_diff_pct: Optional[float] = None
    source: dict[str, Any] = Field(default_factory=dict)
    candidate: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def none_has_no_candidate(self) -> "MatchResult":
        if self.confidence == "none" and self.candidate_id is not None:
            raise ValueError("a 'none' match cannot carry a candidate")
        if self.confidence != "none" and self.candidate_id is None:
            raise ValueError(f"a '{self.confidence}' match needs a candidate")
        return self


class MatchSummary(ApiModel):
    total_sources: int = 0
    total_candidates: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    none: int = 0


class MatchSet(ApiModel):
    """All match results for one reconciliation run."""

    results: list[MatchResult] = Field(default_factory=list)
    summary: MatchSummary = Field(default_factory=MatchSummary)
    unmatched_candidate_ids: list[str] = Field(default_factory=list)

    def accepted(
        self,
        min_confidence: MatchConfidence = "high",
        selected_ids: Optional[set[str]] = None,
    ) -> list[MatchResult]:
        """Results at or above ``min_confidence`` (and in ``selected_ids`` when given)."""
        floor = confidence_rank(min_confidence)
        return [
            r for r in self.results
            if r.candidate_id is not None
            and confidence_rank(r.confidence) >= floor
            and (not selected_ids or r.source_id in selected_ids or r.candidate_id in selected_ids)
        ]


# ============================================
# Apply results
# ============================================

ApplyStatus = Literal["applied", "failed", "skipped"]


class ApplyItemResult(ApiModel):
    source_id: str
    candidate_id: Optional[str] = None
    status: ApplyStatus
    success: bool
    error: Optional[str] = None


class ApplyResult(ApiModel):
    """Outcome of a batch apply: counts plus per-item detail."""

    success: bool = True
    min_confidence: MatchConfidence = "high"
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[ApplyItemResult] = Field(default_factory=list)

    def record(self, item: ApplyItemResult) -> None:
        self.results.append(item)
        if item.status == "applied":
            self.applied += 1
        elif item.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1


# ============================================
# Payment candidates
# ============================================

class PaymentCandidate(ApiModel):
    """An unbilled job offered as the counterpart of a payment."""

    id: str
    job_id: Optional[str] = None
    quoted_total: float
    completed_at: Optional[datetime] = None
    delta: float
    date_diff_days: Optional[float] = None
    confidence: Confidence = "none"
    reason: str = ""


class PaymentCandidatesResponse(ApiModel):
    payment_id: str
    candidates: list[PaymentCandidate] = Field(default_factory=list)


class PaymentConfirmation(ApiModel):
    success: bool = True
    invoice: dict[str, Any]
    payment: dict[str, Any]
    message: str = "Payment matched and invoice generated successfully"


# ============================================
# Imports
# ============================================

class PaymentImportResult(ApiModel):
    success: bool = True
    created: int = 0
    errors: list[str] = Field(default_factory=list)
    payments: list[dict[str, Any]] = Field(default_factory=list)


class PartnerImportPreview(ApiModel):
    success: bool = True
    total_rows: int
    match_set: MatchSet


class PartnerImportResult(ApiModel):
    """Outcome of overlaying partner payouts onto matched jobs."""

    success: bool = True
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[ApplyItemResult] = Field(default_factory=list)

    @classmethod
    def from_apply(cls, result: ApplyResult) -> "PartnerImportResult":
        return cls(
            updated=result.applied,
            failed=result.failed,
            skipped=result.skipped,
            details=result.results,
        )


class AcceptedMatch(ApiModel):
    """A reviewed (source, candidate) pairing submitted for apply."""

    source_id: str
    candidate_id: str
