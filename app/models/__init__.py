# app/models/__init__.py

from app.models.records import (
    Client,
    InvoicingPreferences,
    Invoice,
    Job,
    LineItem,
    PartnerRow,
    Payment,
    PaymentRow,
    Product,
)
from app.models.match import (
    CONFIDENCE_RANK,
    AcceptedMatch,
    ApplyItemResult,
    ApplyResult,
    Confidence,
    MatchConfidence,
    MatchResult,
    MatchSet,
    MatchSummary,
    PartnerImportPreview,
    PartnerImportResult,
    PaymentCandidate,
    PaymentCandidatesResponse,
    PaymentConfirmation,
    PaymentImportResult,
    confidence_rank,
)

__all__ = [
    # Records
    "Client",
    "InvoicingPreferences",
    "Invoice",
    "Job",
    "LineItem",
    "PartnerRow",
    "Payment",
    "PaymentRow",
    "Product",
    # Match
    "CONFIDENCE_RANK",
    "AcceptedMatch",
    "ApplyItemResult",
    "ApplyResult",
    "Confidence",
    "MatchConfidence",
    "MatchResult",
    "MatchSet",
    "MatchSummary",
    "PartnerImportPreview",
    "PartnerImportResult",
    "PaymentCandidate",
    "PaymentCandidatesResponse",
    "PaymentConfirmation",
    "PaymentImportResult",
    "confidence_rank",
]
