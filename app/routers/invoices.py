# app/routers/invoices.py

"""
Invoice auto-match routes.

Links jobs that have no invoice to invoices that have no jobs.
"""

from fastapi import APIRouter, Body, Depends, Query
from typing import Optional

from app.core import reconciliation
from app.database import RecordStore
from app.dependencies import get_store
from app.models import AcceptedMatch, ApplyResult, MatchSet
from app.models.match import ApiModel

router = APIRouter()


class InvoiceApplyRequest(ApiModel):
    min_confidence: Optional[str] = None
    selected_ids: Optional[list[str]] = None
    matches: Optional[list[AcceptedMatch]] = None


@router.get("/auto-match", response_model=MatchSet)
async def preview_invoice_auto_match(store: RecordStore = Depends(get_store)):
    """Proposed job -> invoice links; nothing is written."""
    return await reconciliation.preview_invoice_auto_match(store)


@router.post("/auto-match", response_model=ApplyResult)
async def apply_invoice_auto_match(
    min_confidence: Optional[str] = Query(None, alias="minConfidence"),
    request: Optional[InvoiceApplyRequest] = Body(None),
    store: RecordStore = Depends(get_store),
):
    """
    Link matched jobs and invoices.

    ``minConfidence`` may come as a query parameter or in the body; the
    query parameter wins. Defaults to "high".
    """
    request = request or InvoiceApplyRequest()
    return await reconciliation.apply_invoice_auto_match(
        store,
        min_confidence=min_confidence or request.min_confidence or "high",
        selected_ids=request.selected_ids,
        matches=request.matches,
    )
