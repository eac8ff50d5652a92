# app/core/reconciliation.py

"""
Reconciliation workflows: preview, then apply.

Three instances of the same flow live here:
1. Unmatched payments -> completed, unbilled jobs
2. Jobs without an invoice -> invoices without jobs
3. Partner job export rows -> internal jobs

Preview only reads from the store and is safe to repeat. Apply re-reads
every accepted pair, re-checks client and lifecycle state, and writes each
pair independently: a pair that is no longer in its expected state is
skipped, a pair whose write fails is reported as failed, and neither stops
the rest of the batch.
"""

from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Sequence
import logging
import math

from app.config import get_settings
from app.database import NOT_NULL, RecordStore
from app.models import (
    AcceptedMatch,
    ApplyItemResult,
    ApplyResult,
    Client,
    Invoice,
    Job,
    MatchConfidence,
    MatchSet,
    PartnerImportPreview,
    PartnerImportResult,
    PartnerRow,
    Payment,
    PaymentCandidate,
    PaymentCandidatesResponse,
    PaymentConfirmation,
    PaymentImportResult,
    CONFIDENCE_RANK,
)
from app.core.confidence import (
    same_client,
    score_job_against_invoice,
    score_partner_row,
    score_payment_against_job,
)
from app.core.csv_import import parse_partner_rows, parse_payment_rows
from app.core.errors import (
    ClientMismatchError,
    InvalidInputError,
    LifecycleConflictError,
    ReconciliationError,
    RecordNotFoundError,
)
from app.core.invoicing import (
    InvoiceGenerator,
    job_subtotal,
    load_clients,
    load_products,
    quoted_total,
)
from app.core.matching import match_records

settings = get_settings()
logger = logging.getLogger(__name__)

ApplyOne = Callable[[str, str], Awaitable[None]]


# ============================================
# Shared helpers
# ============================================

def check_min_confidence(min_confidence: str) -> MatchConfidence:
    if min_confidence not in ("high", "medium", "low"):
        raise InvalidInputError(
            f"Invalid minConfidence '{min_confidence}'. Must be one of: high, medium, low"
        )
    return min_confidence


async def _load(store: RecordStore, table: str, record_id: Optional[str], model):
    if not record_id:
        raise InvalidInputError(f"{table.rstrip('s')} id is required")
    row = await store.find_by_id(table, record_id)
    if row is None:
        raise RecordNotFoundError(table, record_id)
    return model.model_validate(row)


async def _apply_pairs(
    pairs: Iterable[tuple[str, str]],
    apply_one: ApplyOne,
    result: ApplyResult,
) -> ApplyResult:
    """Run ``apply_one`` for each pair, isolating failures per pair."""
    for source_id, candidate_id in pairs:
        try:
            await apply_one(source_id, candidate_id)
        except LifecycleConflictError as e:
            result.record(ApplyItemResult(
                source_id=source_id, candidate_id=candidate_id,
                status="skipped", success=False, error=e.detail,
            ))
            continue
        except ReconciliationError as e:
            error = e.detail
        except Exception as e:
            logger.warning("Apply failed for %s -> %s", source_id, candidate_id, exc_info=True)
            error = str(e) or e.__class__.__name__
        else:
            result.record(ApplyItemResult(
                source_id=source_id, candidate_id=candidate_id,
                status="applied", success=True,
            ))
            continue

        result.record(ApplyItemResult(
            source_id=source_id, candidate_id=candidate_id,
            status="failed", success=False, error=error,
        ))
    return result


async def _run_apply(
    preview: Callable[[], Awaitable[MatchSet]],
    apply_one: ApplyOne,
    min_confidence: str,
    selected_ids: Optional[Sequence[str]],
    matches: Optional[Sequence[AcceptedMatch]],
) -> ApplyResult:
    """
    Apply either an explicit allow-list of reviewed pairs, or the pairs a
    fresh preview proposes at or above ``min_confidence``.
    """
    min_confidence = check_min_confidence(min_confidence)
    result = ApplyResult(min_confidence=min_confidence)

    if matches:
        return await _apply_pairs(
            ((m.source_id, m.candidate_id) for m in matches), apply_one, result,
        )

    match_set = await preview()
    selected = set(selected_ids) if selected_ids else None
    accepted = match_set.accepted(min_confidence, selected)
    accepted_ids = {r.source_id for r in accepted}

    for r in match_set.results:
        if r.source_id in accepted_ids:
            continue
        if r.candidate_id is None:
            error = r.reason
        elif CONFIDENCE_RANK[r.confidence] < CONFIDENCE_RANK[min_confidence]:
            error = f"Confidence '{r.confidence}' below minimum '{min_confidence}'"
        else:
            error = "Not selected"
        result.record(ApplyItemResult(
            source_id=r.source_id, candidate_id=r.candidate_id,
            status="skipped", success=False, error=error,
        ))

    return await _apply_pairs(
        ((r.source_id, r.candidate_id) for r in accepted), apply_one, result,
    )


def _log_preview(kind: str, match_set: MatchSet) -> None:
    s = match_set.summary
    logger.info(
        "%s preview: %d sources, %d candidates (high=%d medium=%d low=%d none=%d)",
        kind, s.total_sources, s.total_candidates, s.high, s.medium, s.low, s.none,
    )


def _log_apply(kind: str, result: ApplyResult) -> None:
    logger.info(
        "%s apply: applied=%d failed=%d skipped=%d",
        kind, result.applied, result.failed, result.skipped,
    )


async def _job_totals(store: RecordStore, jobs: Sequence[Job], with_tax: bool) -> dict[str, float]:
    products = await load_products(store, jobs)
    if not with_tax:
        return {job.id: job_subtotal(job, products) for job in jobs}
    clients = await load_clients(store, {job.client_id for job in jobs if job.client_id})
    return {job.id: quoted_total(job, products, clients.get(job.client_id)) for job in jobs}


async def _clients_named(store: RecordStore, fragments: Iterable[str]) -> list[Client]:
    """Clients whose company name contains any fragment (case-insensitive)."""
    fragments = [f.lower() for f in fragments if f]
    if not fragments:
        return []
    clients = [Client.model_validate(r) for r in await store.find("clients")]
    return [
        c for c in clients
        if c.company_name and any(f in c.company_name.lower() for f in fragments)
    ]


# ============================================
# Payments -> unbilled jobs
# ============================================

async def _unbilled_jobs(store: RecordStore, client_id: Optional[str] = None, limit: Optional[int] = None) -> list[Job]:
    filters = {"status": "done", "invoiceStatus": "ready", "invoice": None}
    if client_id:
        filters["client"] = client_id
    rows = await store.find("jobs", filters, limit=limit or settings.job_fetch_limit)
    return [job for job in (Job.model_validate(r) for r in rows) if job.is_unbilled]


def _job_date(job: Job) -> Optional[datetime]:
    return job.completed_at or job.target_date


async def preview_payment_candidates(
    store: RecordStore,
    payment_id: Optional[str],
    limit: Optional[int] = None,
) -> PaymentCandidatesResponse:
    """
    Rank the client's unbilled jobs as counterparts for one payment.

    Closest completion date first; each candidate carries its quoted total,
    the payment delta, and the numeric-window tier.
    """
    if not payment_id:
        raise InvalidInputError("paymentId is required")
    payment = await _load(store, "payments", payment_id, Payment)
    if payment.status != "unmatched":
        raise LifecycleConflictError("Payment is already matched")
    if not payment.client_id:
        raise InvalidInputError("Payment has no client")

    jobs = await _unbilled_jobs(store, payment.client_id, settings.payment_candidate_pool)
    totals = await _job_totals(store, jobs, with_tax=True)

    candidates = []
    for job in jobs:
        total = totals[job.id]
        score = score_payment_against_job(payment, job, total)
        candidates.append(PaymentCandidate(
            id=job.id,
            job_id=job.job_id,
            quoted_total=total,
            completed_at=job.completed_at,
            delta=round(payment.amount - total, 2),
            date_diff_days=score.date_diff_days,
            confidence=score.confidence,
            reason=score.reason,
        ))

    candidates.sort(key=lambda c: math.inf if c.date_diff_days is None else c.date_diff_days)
    limit = limit or settings.payment_candidate_limit
    return PaymentCandidatesResponse(payment_id=payment.id, candidates=candidates[:limit])


def _is_half_settled(payment: Payment, job_id: str) -> bool:
    """Claimed for this job by an earlier apply that stopped before linking the invoice."""
    return (
        payment.status == "matched"
        and payment.matched_job == job_id
        and not payment.matched_invoice
    )


async def _load_payment_pair(store: RecordStore, payment_id: str, job_id: str) -> tuple[Payment, Job]:
    """
    Re-read a payment/job pair and check it can still be settled.

    A payment left claimed for this job without an invoice link is accepted
    so the settlement can be finished.
    """
    payment = await _load(store, "payments", payment_id, Payment)
    resuming = _is_half_settled(payment, job_id)
    if payment.status != "unmatched" and not resuming:
        raise LifecycleConflictError("Payment is already matched")

    job = await _load(store, "jobs", job_id, Job)
    if not same_client(payment.client_id, job.client_id):
        raise ClientMismatchError("Payment and job belong to different clients")

    if resuming:
        if job.status != "done" or job.invoice_status not in ("ready", "invoiced"):
            raise LifecycleConflictError("Job is no longer awaiting payment")
    elif job.status != "done" or job.invoice_status != "ready":
        raise LifecycleConflictError("Job must have status=done and invoiceStatus=ready")
    return payment, job


async def _settle_payment(
    store: RecordStore,
    invoices: InvoiceGenerator,
    payment: Payment,
    job: Job,
    user_id: str,
) -> dict:
    """
    Claim the payment, invoice the job, and mark everything paid.

    The payment is claimed with a conditional update first; if another
    request got there already, nothing else is written. A payment already
    claimed for this job reuses the job's invoice when it has one, so a
    settlement interrupted after the claim finishes on the next apply.
    """
    claimed_now = False
    if payment.status == "unmatched":
        claimed = await store.update(
            "payments", payment.id,
            {"status": "matched", "matchedJob": job.id},
            expected={"status": "unmatched"},
        )
        if claimed is None:
            raise LifecycleConflictError("Payment is already matched")
        claimed_now = True
    else:
        logger.info("Resuming settlement of payment %s against job %s", payment.id, job.id)

    if job.invoice_id and not claimed_now:
        invoice = await store.find_by_id("invoices", job.invoice_id)
        if invoice is None:
            raise RecordNotFoundError("invoices", job.invoice_id)
    else:
        try:
            generated = await invoices.generate_invoice_from_jobs([job.id], user_id)
            if not generated.success:
                raise InvalidInputError(generated.error or "Invoice generation failed")
        except Exception:
            await store.update("payments", payment.id, {"status": "unmatched", "matchedJob": None})
            raise
        invoice = generated.invoice

    await store.update("invoices", invoice["id"], {
        "status": "paid",
        "paidAmount": payment.amount,
        "paidDate": payment.payment_date.date().isoformat() if payment.payment_date else None,
    })
    await store.update("payments", payment.id, {"matchedInvoice": invoice["id"]})
    await store.update("jobs", job.id, {"invoiceStatus": "paid"})

    logger.info("Payment %s settled against job %s (invoice %s)", payment.id, job.id, invoice["id"])
    return invoice


async def confirm_payment_match(
    store: RecordStore,
    invoices: InvoiceGenerator,
    payment_id: Optional[str],
    job_id: Optional[str],
    user_id: Optional[str],
) -> PaymentConfirmation:
    """Settle one reviewed payment/job pairing."""
    if not payment_id or not job_id or not user_id:
        raise InvalidInputError("paymentId, jobId, and userId are required")

    payment, job = await _load_payment_pair(store, payment_id, job_id)
    invoice = await _settle_payment(store, invoices, payment, job, user_id)

    return PaymentConfirmation(
        invoice={"id": invoice["id"], "total": invoice.get("total")},
        payment={"id": payment.id, "amount": payment.amount},
    )


async def preview_payment_auto_match(store: RecordStore, client_id: Optional[str] = None) -> MatchSet:
    """Match every unmatched payment (optionally one client's) to unbilled jobs."""
    filters = {"status": "unmatched"}
    if client_id:
        filters["client"] = client_id
    rows = await store.find("payments", filters, limit=settings.payment_fetch_limit)
    payments = [Payment.model_validate(r) for r in rows]

    jobs = await _unbilled_jobs(store, client_id)
    totals = await _job_totals(store, jobs, with_tax=True)

    match_set = match_records(
        payments,
        jobs,
        lambda p, j: score_payment_against_job(p, j, totals[j.id]),
        source_id=lambda p: p.id,
        candidate_id=lambda j: j.id,
        describe_source=lambda p: {
            "amount": p.amount,
            "paymentDate": p.payment_date.isoformat() if p.payment_date else None,
            "referenceNumber": p.reference_number,
            "client": p.client_id,
        },
        describe_candidate=lambda j: {
            "jobId": j.job_id,
            "quotedTotal": totals[j.id],
            "completedAt": _job_date(j).isoformat() if _job_date(j) else None,
        },
        no_match_reason="No matching job found",
    )
    _log_preview("Payment", match_set)
    return match_set


async def apply_payment_auto_match(
    store: RecordStore,
    invoices: InvoiceGenerator,
    user_id: Optional[str],
    client_id: Optional[str] = None,
    min_confidence: str = "high",
    selected_ids: Optional[Sequence[str]] = None,
    matches: Optional[Sequence[AcceptedMatch]] = None,
) -> ApplyResult:
    if not user_id:
        raise InvalidInputError("userId is required")

    async def apply_one(payment_id: str, job_id: str) -> None:
        payment, job = await _load_payment_pair(store, payment_id, job_id)
        await _settle_payment(store, invoices, payment, job, user_id)

    # Collected up front so items interrupted by this run wait for the next one.
    stranded = [] if matches else await _half_settled_pairs(store, client_id, selected_ids)

    result = await _run_apply(
        lambda: preview_payment_auto_match(store, client_id),
        apply_one, min_confidence, selected_ids, matches,
    )

    if stranded:
        logger.info("Finishing %d interrupted payment settlement(s)", len(stranded))
        await _apply_pairs(stranded, apply_one, result)

    _log_apply("Payment", result)
    return result


async def _half_settled_pairs(
    store: RecordStore,
    client_id: Optional[str],
    selected_ids: Optional[Sequence[str]],
) -> list[tuple[str, str]]:
    """(payment, job) pairs claimed by an earlier apply but never linked to an invoice."""
    filters = {"status": "matched", "matchedJob": NOT_NULL, "matchedInvoice": None}
    if client_id:
        filters["client"] = client_id
    rows = await store.find("payments", filters, limit=settings.payment_fetch_limit)

    selected = set(selected_ids or ())
    pairs = []
    for payment in (Payment.model_validate(r) for r in rows):
        if not _is_half_settled(payment, payment.matched_job):
            continue
        if selected and payment.id not in selected and payment.matched_job not in selected:
            continue
        pairs.append((payment.id, payment.matched_job))
    return pairs


async def import_payments_csv(
    store: RecordStore,
    content: str,
    client_id: Optional[str],
    user_id: Optional[str] = None,
) -> PaymentImportResult:
    """
    Create unmatched payments from a remittance export.

    Rows that duplicate a payment already in the store (same client, amount,
    date and reference) are reported instead of created, so re-importing a
    file is safe. Identical rows within one file are all created.
    """
    if not client_id:
        raise InvalidInputError("clientId is required")
    await _load(store, "clients", client_id, Client)

    rows, errors = parse_payment_rows(content)

    existing = [
        Payment.model_validate(r)
        for r in await store.find("payments", {"client": client_id})
    ]
    seen = {
        (p.amount, p.payment_date.date() if p.payment_date else None, p.reference_number or "")
        for p in existing
    }

    result = PaymentImportResult(errors=errors)
    for row in rows:
        key = (row.amount, row.payment_date, row.reference_number)
        if key in seen:
            result.errors.append(f"Row {row.row_number}: duplicate of an existing payment")
            continue
        try:
            payment = await store.create("payments", {
                "client": client_id,
                "amount": row.amount,
                "paymentDate": row.payment_date.isoformat(),
                "referenceNumber": row.reference_number,
                "notes": row.notes,
                "source": "csv-import",
                "status": "unmatched",
                "importedBy": user_id,
            })
        except Exception as e:
            logger.warning("Payment import failed for row %d", row.row_number, exc_info=True)
            result.errors.append(f"Row {row.row_number}: {e}")
            continue

        result.payments.append({
            "id": payment["id"],
            "amount": row.amount,
            "referenceNumber": row.reference_number,
        })

    result.created = len(result.payments)
    logger.info("Imported %d payments for client %s (%d errors)", result.created, client_id, len(result.errors))
    return result


# ============================================
# Jobs without invoice -> invoices without jobs
# ============================================

async def preview_invoice_auto_match(store: RecordStore) -> MatchSet:
    """
    Pair jobs that have no invoice with invoices that have no jobs.

    Clients billed outside the normal flow are excluded.
    """
    excluded = {c.id for c in await _clients_named(store, settings.auto_match_excluded_clients)}

    job_rows = await store.find("jobs", {"invoice": None}, limit=settings.invoice_fetch_limit)
    jobs = [
        job for job in (Job.model_validate(r) for r in job_rows)
        if not job.invoice_id and job.client_id not in excluded
    ]

    invoice_rows = await store.find("invoices", {"jobs": None}, limit=settings.invoice_fetch_limit)
    invoices = [inv for inv in (Invoice.model_validate(r) for r in invoice_rows) if not inv.job_ids]

    totals = await _job_totals(store, jobs, with_tax=False)

    match_set = match_records(
        jobs,
        invoices,
        lambda job, inv: score_job_against_invoice(job, totals[job.id], inv),
        source_id=lambda job: job.id,
        candidate_id=lambda inv: inv.id,
        describe_source=lambda job: {
            "jobId": job.job_id,
            "jobName": job.model_name or "Unnamed",
            "jobDate": job.target_date.isoformat() if job.target_date else None,
            "jobTotal": totals[job.id],
            "client": job.client_id,
        },
        describe_candidate=lambda inv: {
            "invoiceNumber": inv.invoice_number,
            "invoiceDate": inv.invoice_date.isoformat() if inv.invoice_date else None,
            "invoiceTotal": inv.total,
        },
        no_match_reason="No matching invoice found",
    )
    _log_preview("Invoice", match_set)
    return match_set


async def _link_job_to_invoice(store: RecordStore, job_id: str, invoice_id: str) -> None:
    job = await _load(store, "jobs", job_id, Job)
    invoice = await _load(store, "invoices", invoice_id, Invoice)

    if not same_client(job.client_id, invoice.client_id):
        raise ClientMismatchError("Job and invoice belong to different clients")

    if job.invoice_id and job.invoice_id != invoice.id:
        raise LifecycleConflictError("Job already has an invoice")
    if invoice.job_ids and job.id not in invoice.job_ids:
        raise LifecycleConflictError("Invoice is already linked to other jobs")
    if job.invoice_id == invoice.id and job.id in invoice.job_ids:
        raise LifecycleConflictError("Already linked")

    if not job.invoice_id:
        linked = await store.update(
            "jobs", job.id,
            {"invoice": invoice.id, "invoiceStatus": "invoiced"},
            expected={"invoice": None},
        )
        if linked is None:
            raise LifecycleConflictError("Job already has an invoice")

    # Also completes a link left half-written by an earlier failed apply.
    if job.id not in invoice.job_ids:
        await store.update("invoices", invoice.id, {"jobs": [*invoice.job_ids, job.id]})


async def apply_invoice_auto_match(
    store: RecordStore,
    min_confidence: str = "high",
    selected_ids: Optional[Sequence[str]] = None,
    matches: Optional[Sequence[AcceptedMatch]] = None,
) -> ApplyResult:
    async def apply_one(job_id: str, invoice_id: str) -> None:
        await _link_job_to_invoice(store, job_id, invoice_id)

    result = await _run_apply(
        lambda: preview_invoice_auto_match(store),
        apply_one, min_confidence, selected_ids, matches,
    )
    _log_apply("Invoice", result)
    return result


# ============================================
# Partner export rows -> jobs
# ============================================

async def _partner_client_id(store: RecordStore, client_id: Optional[str]) -> str:
    if client_id:
        await _load(store, "clients", client_id, Client)
        return client_id

    partners = await _clients_named(store, [settings.partner_client_name])
    if not partners:
        raise InvalidInputError(
            f"No client matching '{settings.partner_client_name}'; pass clientId explicitly"
        )
    return partners[0].id


async def _match_partner_rows(
    store: RecordStore,
    content: str,
    client_id: Optional[str],
) -> tuple[list[PartnerRow], MatchSet]:
    if not content or not content.strip():
        raise InvalidInputError("No file provided")

    client_id = await _partner_client_id(store, client_id)
    rows = parse_partner_rows(content, client_id)

    job_rows = await store.find("jobs", {"client": client_id}, limit=settings.job_fetch_limit)
    jobs = [Job.model_validate(r) for r in job_rows]

    match_set = match_records(
        rows,
        jobs,
        score_partner_row,
        source_id=lambda row: row.source_id,
        candidate_id=lambda job: job.id,
        describe_source=lambda row: row.model_dump(by_alias=True, exclude={"client_id"}),
        describe_candidate=lambda job: {
            "jobId": job.job_id or "",
            "captureAddress": job.capture_address or "",
            "modelName": job.model_name or "",
            "status": job.status or "",
        },
        no_match_reason="No match found",
    )
    _log_preview("Partner import", match_set)
    return rows, match_set


async def preview_partner_import(
    store: RecordStore,
    content: str,
    client_id: Optional[str] = None,
) -> PartnerImportPreview:
    rows, match_set = await _match_partner_rows(store, content, client_id)
    return PartnerImportPreview(total_rows=len(rows), match_set=match_set)


def partner_patch(row: PartnerRow, job_row: dict) -> dict:
    """Fields a partner row overlays onto its job: CT rate on the first line item, payouts, AP number."""
    line_items = [dict(item) for item in (job_row.get("lineItems") or [])]
    if line_items:
        line_items[0]["amount"] = row.ct_rate

    patch = {"lineItems": line_items}
    if row.ct_travel_payout:
        patch["travelPayout"] = row.ct_travel_payout
    if row.ct_off_hours_payout:
        patch["offHoursPayout"] = row.ct_off_hours_payout
    if row.ap_invoice_number:
        patch["apInvoiceNumber"] = row.ap_invoice_number
    return patch


async def apply_partner_import(
    store: RecordStore,
    content: str,
    client_id: Optional[str] = None,
    selected_ids: Optional[Sequence[str]] = None,
    min_confidence: str = "low",
) -> PartnerImportResult:
    """
    Overlay payout figures from matched partner rows onto their jobs.

    ``selected_ids`` may name job ids or row ids; when empty every match at
    or above ``min_confidence`` is applied.
    """
    rows, match_set = await _match_partner_rows(store, content, client_id)
    rows_by_id = {row.source_id: row for row in rows}
    scope_client = rows[0].client_id

    async def apply_one(row_id: str, job_id: str) -> None:
        row = rows_by_id[row_id]
        job_row = await store.find_by_id("jobs", job_id)
        if job_row is None:
            raise RecordNotFoundError("jobs", job_id)
        job = Job.model_validate(job_row)
        if not same_client(scope_client, job.client_id):
            raise ClientMismatchError("Job does not belong to the partner client")

        patch = partner_patch(row, job_row)
        if all(job_row.get(key) == value for key, value in patch.items()):
            raise LifecycleConflictError("Already applied")
        await store.update("jobs", job_id, patch)

    async def preview() -> MatchSet:
        return match_set

    result = await _run_apply(preview, apply_one, min_confidence, selected_ids, None)
    _log_apply("Partner import", result)
    return PartnerImportResult.from_apply(result)
