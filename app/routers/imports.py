# app/routers/imports.py

"""
Partner job export import.

One multipart endpoint: ``action=preview`` matches rows to jobs without
writing; ``action=apply`` overlays the selected matches' payouts.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from typing import Optional
import json
import logging

from app.core import reconciliation
from app.core.errors import InvalidInputError
from app.database import RecordStore
from app.dependencies import get_store

router = APIRouter()
logger = logging.getLogger(__name__)


def parse_selected(raw: Optional[str]) -> list[str]:
    """``selectedMatches`` is a JSON array of ids; blank means none."""
    if not raw:
        return []
    try:
        selected = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidInputError("selectedMatches must be a JSON array")
    if not isinstance(selected, list):
        raise InvalidInputError("selectedMatches must be a JSON array")
    return [str(s) for s in selected]


@router.post("/partner-jobs")
async def import_partner_jobs(
    file: Optional[UploadFile] = File(None),
    action: str = Form("preview"),
    client_id: Optional[str] = Form(None, alias="clientId"),
    min_confidence: str = Form("low", alias="minConfidence"),
    selected_matches: Optional[str] = Form(None, alias="selectedMatches"),
    store: RecordStore = Depends(get_store),
):
    if file is None:
        raise InvalidInputError("No file provided")
    if action not in ("preview", "apply"):
        raise InvalidInputError("Invalid action. Use 'preview' or 'apply'")

    content = (await file.read()).decode("utf-8", errors="replace")
    logger.info("Partner import %s: %s", action, file.filename)

    if action == "preview":
        return await reconciliation.preview_partner_import(store, content, client_id)

    return await reconciliation.apply_partner_import(
        store,
        content,
        client_id=client_id,
        selected_ids=parse_selected(selected_matches),
        min_confidence=min_confidence,
    )
