# app/routers/payments.py

"""
Payment reconciliation routes.

Single payment: list candidate jobs, then confirm one.
Batch: preview and apply auto-matches, and import payments from CSV.
"""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from typing import Optional

from app.core import reconciliation
from app.core.errors import InvalidInputError
from app.core.invoicing import InvoiceGenerator
from app.database import RecordStore
from app.dependencies import get_invoice_generator, get_store
from app.models import (
    AcceptedMatch,
    ApplyResult,
    MatchSet,
    PaymentCandidatesResponse,
    PaymentConfirmation,
    PaymentImportResult,
)
from app.models.match import ApiModel

router = APIRouter()


# ============================================
# Request Models
# ============================================

class ConfirmPaymentRequest(ApiModel):
    payment_id: Optional[str] = None
    job_id: Optional[str] = None
    user_id: Optional[str] = None


class PaymentApplyRequest(ApiModel):
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    min_confidence: str = "high"
    selected_ids: Optional[list[str]] = None
    matches: Optional[list[AcceptedMatch]] = None


# ============================================
# Single payment
# ============================================

@router.get("/candidates", response_model=PaymentCandidatesResponse)
async def list_payment_candidates(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    store: RecordStore = Depends(get_store),
):
    """Unbilled jobs of the payment's client, closest completion date first."""
    return await reconciliation.preview_payment_candidates(store, payment_id)


@router.post("/confirm", response_model=PaymentConfirmation)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    store: RecordStore = Depends(get_store),
    invoices: InvoiceGenerator = Depends(get_invoice_generator),
):
    """Generate the job's invoice, mark it paid, and link the payment."""
    return await reconciliation.confirm_payment_match(
        store, invoices, request.payment_id, request.job_id, request.user_id,
    )


# ============================================
# Batch auto-match
# ============================================

@router.get("/auto-match", response_model=MatchSet)
async def preview_payment_auto_match(
    client_id: Optional[str] = Query(None, alias="clientId"),
    store: RecordStore = Depends(get_store),
):
    return await reconciliation.preview_payment_auto_match(store, client_id)


@router.post("/auto-match", response_model=ApplyResult)
async def apply_payment_auto_match(
    request: PaymentApplyRequest,
    store: RecordStore = Depends(get_store),
    invoices: InvoiceGenerator = Depends(get_invoice_generator),
):
    """
    Settle matched payments.

    Pass ``matches`` to apply reviewed pairs exactly; otherwise the preview
    is recomputed and everything at or above ``minConfidence`` is applied.
    """
    return await reconciliation.apply_payment_auto_match(
        store,
        invoices,
        user_id=request.user_id,
        client_id=request.client_id,
        min_confidence=request.min_confidence,
        selected_ids=request.selected_ids,
        matches=request.matches,
    )


# ============================================
# CSV import
# ============================================

@router.post("/import-csv", response_model=PaymentImportResult)
async def import_payments(
    csv: Optional[UploadFile] = File(None),
    client_id: Optional[str] = Form(None, alias="clientId"),
    user_id: Optional[str] = Form(None, alias="userId"),
    store: RecordStore = Depends(get_store),
):
    if csv is None:
        raise InvalidInputError("No file provided")
    content = (await csv.read()).decode("utf-8", errors="replace")
    return await reconciliation.import_payments_csv(store, content, client_id, user_id)
