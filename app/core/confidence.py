# app/core/confidence.py

"""
Confidence scoring for record matching.

Three independent signals, each mapped straight to a tier:
- Identifier:      job code / AP invoice number (exact -> high, contained -> medium)
- Address:         normalized capture address (exact -> high, street -> medium/low)
- Numeric window:  date proximity AND amount delta inside a tier's window

Every entry point that pairs two records checks the client first; records
belonging to different (or unknown) clients always score "none".
"""

from datetime import date
from typing import NamedTuple, Optional, Sequence
import math

from app.models import Confidence, Invoice, Job, PartnerRow, Payment, confidence_rank
from app.core.normalizers import (
    normalize_address,
    normalize_datetime,
    normalize_job_code,
    street_parts,
)
from app.config import get_settings

settings = get_settings()

# Shorter identifiers only ever match exactly.
MIN_CONTAINED_CODE_LENGTH = 3

SECONDS_PER_DAY = 86400


class Score(NamedTuple):
    """Outcome of scoring one (source, candidate) pair."""

    confidence: Confidence
    reason: str
    date_diff_days: Optional[float] = None
    amount_diff_pct: Optional[float] = None

    @property
    def rank(self) -> int:
        return confidence_rank(self.confidence)

    @property
    def is_match(self) -> bool:
        return self.confidence != "none"


NO_MATCH = Score("none", "No match")


class TierWindow(NamedTuple):
    confidence: Confidence
    max_days: float
    max_amount_pct: float


def default_windows() -> tuple[TierWindow, ...]:
    """Tier windows from settings, tightest first."""
    return (
        TierWindow("high", settings.high_max_days, settings.high_max_amount_pct),
        TierWindow("medium", settings.medium_max_days, settings.medium_max_amount_pct),
        TierWindow("low", settings.low_max_days, settings.low_max_amount_pct),
    )


def same_client(source_client: Optional[str], candidate_client: Optional[str]) -> bool:
    """Both sides carry a client id and it is the same one."""
    if not source_client or not candidate_client:
        return False
    return str(source_client) == str(candidate_client)


# ============================================
# Identifier scoring
# ============================================

def score_identifier(
    candidate_code: Optional[str],
    source_code: Optional[str],
    secondary_code: Optional[str] = None,
) -> Score:
    """
    Compare a candidate's job code with a source's primary and secondary ids.

    Exact matches on either id are high; containment either direction is
    medium. Empty ids never match.
    """
    candidate = normalize_job_code(candidate_code)
    if not candidate:
        return NO_MATCH

    primary = normalize_job_code(source_code)
    secondary = normalize_job_code(secondary_code)

    if primary and candidate == primary:
        return Score("high", "Job ID match (high confidence)")
    if secondary and candidate == secondary:
        return Score("high", "AP invoice number match (high confidence)")

    for label, code in (("Job ID", primary), ("AP invoice number", secondary)):
        if _contains_either(candidate, code):
            return Score("medium", f"{label} partial match (medium confidence)")

    return NO_MATCH


def _contains_either(a: str, b: str) -> bool:
    if not a or not b:
        return False
    if min(len(a), len(b)) < MIN_CONTAINED_CODE_LENGTH:
        return False
    return a in b or b in a


# ============================================
# Address scoring
# ============================================

def score_address(source_address: Optional[str], candidate_address: Optional[str]) -> Score:
    """Compare two capture addresses after normalization."""
    source = normalize_address(source_address)
    candidate = normalize_address(candidate_address)
    if not source or not candidate:
        return NO_MATCH

    if source == candidate:
        return Score("high", "Address match (high confidence)")

    source_parts = street_parts(source)
    candidate_parts = street_parts(candidate)

    # Same house number, street fragment found in the other address
    if source_parts.number and source_parts.number == candidate_parts.number:
        if (candidate_parts.street and candidate_parts.street in source) or (
            source_parts.street and source_parts.street in candidate
        ):
            return Score("medium", "Address match (medium confidence)")

    # Candidate mentions the source's number and first street word
    first_word = source_parts.street.split(" ")[0] if source_parts.street else ""
    if source_parts.number and first_word:
        if source_parts.number in candidate and first_word in candidate:
            return Score("low", "Address match (low confidence)")

    return NO_MATCH


# ============================================
# Numeric-window scoring
# ============================================

def date_diff_days(a: Optional[date], b: Optional[date]) -> float:
    """Absolute distance in (fractional) days; infinite when either side is missing."""
    a, b = normalize_datetime(a), normalize_datetime(b)
    if a is None or b is None:
        return math.inf
    return abs((a - b).total_seconds()) / SECONDS_PER_DAY


def amount_diff_pct(source_amount: Optional[float], candidate_amount: Optional[float]) -> float:
    """Relative amount delta against the source; 1.0 when the source has no amount."""
    if not source_amount or source_amount <= 0:
        return 1.0
    return abs((candidate_amount or 0.0) - source_amount) / source_amount


def score_numeric_window(
    source_date: Optional[date],
    source_amount: Optional[float],
    candidate_date: Optional[date],
    candidate_amount: Optional[float],
    windows: Optional[Sequence[TierWindow]] = None,
) -> Score:
    """
    Bucket a (date, amount) pair into the tightest window it fits.

    | Tier   | days <= | amount <= |
    |--------|---------|-----------|
    | high   | 7       | 5%        |
    | medium | 30      | 15%       |
    | low    | 60      | 30%       |
    """
    if windows is None:
        windows = default_windows()

    days = date_diff_days(source_date, candidate_date)
    pct = amount_diff_pct(source_amount, candidate_amount)
    metrics = {
        "date_diff_days": None if math.isinf(days) else round(days, 4),
        "amount_diff_pct": round(pct, 4),
    }

    for window in windows:
        if days <= window.max_days and pct <= window.max_amount_pct:
            reason = (
                f"Client match, date within {days:.0f} days, "
                f"amount within {pct * 100:.0f}%"
            )
            return Score(window.confidence, reason, **metrics)

    if math.isinf(days):
        reason = "Missing date"
    else:
        reason = f"Outside match window ({days:.0f} days, {pct * 100:.0f}% amount difference)"
    return Score("none", reason, **metrics)


# ============================================
# Record pairings
# ============================================

def score_payment_against_job(
    payment: Payment,
    job: Job,
    job_total: float,
    windows: Optional[Sequence[TierWindow]] = None,
) -> Score:
    """Payment vs unbilled job: payment date/amount against completion date/quoted total."""
    if not same_client(payment.client_id, job.client_id):
        return NO_MATCH
    job_date = job.completed_at or job.target_date
    return score_numeric_window(payment.payment_date, payment.amount, job_date, job_total, windows)


def score_job_against_invoice(
    job: Job,
    job_total: float,
    invoice: Invoice,
    windows: Optional[Sequence[TierWindow]] = None,
) -> Score:
    """Job without invoice vs invoice without jobs: target date/job total against invoice date/total."""
    if not same_client(job.client_id, invoice.client_id):
        return NO_MATCH
    return score_numeric_window(job.target_date, job_total, invoice.invoice_date, invoice.total, windows)


def score_partner_row(row: PartnerRow, job: Job) -> Score:
    """
    Partner export row vs internal job.

    Identifier scoring first; address scoring only when it can do better.
    On equal tiers the identifier result is kept.
    """
    if not same_client(row.client_id, job.client_id):
        return NO_MATCH

    by_identifier = score_identifier(job.job_id, row.job_id, row.ap_invoice_number)
    if by_identifier.confidence == "high":
        return by_identifier

    by_address = score_address(row.capture_address, job.capture_address)
    if by_address.rank > by_identifier.rank:
        return by_address
    return by_identifier
