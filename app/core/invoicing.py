# app/core/invoicing.py

"""
Invoice arithmetic and the default invoice generator.

Line items come from each job's products: per-sq-ft products bill the job's
square footage at the product base price, and tax applies to taxable items
only at the client's rate unless tax exempt. Only the job subtotal used for
invoice matching lets a line item's own ``amount`` stand in for the price.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Protocol, Sequence
import logging

from pydantic import BaseModel

from app.database import RecordStore
from app.models import Client, Job, LineItem, Product
from app.models.match import ApiModel

logger = logging.getLogger(__name__)

TERM_DAYS = {
    "due-on-receipt": 0,
    "net-15": 15,
    "net-30": 30,
    "net-45": 45,
    "net-60": 60,
}
DEFAULT_TERM_DAYS = 30


class InvoiceLine(ApiModel):
    description: str
    quantity: float
    rate: float
    amount: float
    taxable: bool = True
    job_reference: Optional[str] = None


class InvoiceTotals(BaseModel):
    subtotal: float
    tax_amount: float
    total: float


class InvoiceGenerationResult(BaseModel):
    success: bool
    invoice: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class InvoiceGenerator(Protocol):
    async def generate_invoice_from_jobs(self, job_ids: Sequence[str], user_id: str) -> InvoiceGenerationResult:
        ...


# ============================================
# Arithmetic
# ============================================

def build_line(
    item: LineItem,
    product: Optional[Product],
    job: Job,
    use_item_amount: bool = False,
) -> Optional[InvoiceLine]:
    """
    Price one job line item at the product base price; items without a
    product are skipped. With ``use_item_amount`` the item's own amount,
    when set, replaces the base price.
    """
    product = item.product or product
    if product is None:
        return None

    quantity = item.quantity or 1
    if product.unit_type == "per-sq-ft" and job.sq_ft:
        quantity = job.sq_ft

    rate = product.base_price
    if use_item_amount and item.amount is not None:
        rate = item.amount
    return InvoiceLine(
        description=f"{product.name} - Job #{job.job_id}",
        quantity=quantity,
        rate=rate,
        amount=quantity * rate,
        taxable=product.taxable,
        job_reference=job.job_id,
    )


def job_lines(job: Job, products: dict[str, Product], use_item_amount: bool = False) -> list[InvoiceLine]:
    lines = []
    for item in job.line_items:
        line = build_line(item, products.get(item.product_id or ""), job, use_item_amount)
        if line is None:
            logger.warning("Product not found for line item in job %s", job.job_id)
            continue
        lines.append(line)
    return lines


def calculate_totals(lines: Sequence[InvoiceLine], tax_rate: float) -> InvoiceTotals:
    """Subtotal of all lines; tax (percent) on taxable lines only."""
    subtotal = sum(line.amount for line in lines)
    tax_amount = 0.0
    if tax_rate > 0:
        taxable = sum(line.amount for line in lines if line.taxable)
        tax_amount = taxable * tax_rate / 100
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax_amount, total=subtotal + tax_amount)


def quoted_total(job: Job, products: dict[str, Product], client: Optional[Client] = None) -> float:
    """What the job should bill, tax included, rounded to cents."""
    tax_rate = client.invoicing_preferences.effective_tax_rate if client else 0.0
    return round(calculate_totals(job_lines(job, products), tax_rate).total, 2)


def job_subtotal(job: Job, products: dict[str, Product]) -> float:
    """Pre-tax job total, honoring per-item amounts (partner rates) over base prices."""
    return round(sum(line.amount for line in job_lines(job, products, use_item_amount=True)), 2)


def due_date(invoice_date: date, terms: Optional[str]) -> date:
    return invoice_date + timedelta(days=TERM_DAYS.get(terms or "", DEFAULT_TERM_DAYS))


async def load_products(store: RecordStore, jobs: Sequence[Job]) -> dict[str, Product]:
    """Fetch the products referenced (but not expanded) by the jobs' line items."""
    products: dict[str, Product] = {}
    missing: set[str] = set()
    for job in jobs:
        for item in job.line_items:
            if item.product is not None:
                products[item.product.id] = item.product
            elif item.product_id:
                missing.add(item.product_id)

    missing -= products.keys()
    if missing:
        rows = await store.find("products", {"id": sorted(missing)})
        products.update({p.id: p for p in (Product.model_validate(r) for r in rows)})
    return products


async def load_clients(store: RecordStore, client_ids: set[str]) -> dict[str, Client]:
    if not client_ids:
        return {}
    rows = await store.find("clients", {"id": sorted(client_ids)})
    return {c.id: c for c in (Client.model_validate(r) for r in rows)}


# ============================================
# Store-backed generator
# ============================================

class StoreInvoiceGenerator:
    """Creates draft invoices directly in the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def generate_invoice_from_jobs(self, job_ids: Sequence[str], user_id: str) -> InvoiceGenerationResult:
        """
        Generate one invoice covering ``job_ids``.

        All jobs must exist, share a client, and be done and ready to invoice.
        Validation problems come back as ``success=False``; store errors raise.
        """
        try:
            jobs = await self._load_jobs(job_ids)
            client = await self._load_client(jobs)
            products = await load_products(self.store, jobs)

            lines = [line for job in jobs for line in job_lines(job, products)]
            if not lines:
                raise ValueError("No line items found in the selected jobs")
        except ValueError as e:
            logger.warning("Invoice generation rejected for jobs %s: %s", list(job_ids), e)
            return InvoiceGenerationResult(success=False, error=str(e))

        prefs = client.invoicing_preferences
        totals = calculate_totals(lines, prefs.effective_tax_rate)
        now = datetime.now(timezone.utc)

        invoice = await self.store.create("invoices", {
            "status": "draft",
            "client": client.id,
            "jobs": [job.id for job in jobs],
            "lineItems": [line.model_dump(by_alias=True) for line in lines],
            "subtotal": totals.subtotal,
            "taxRate": prefs.effective_tax_rate,
            "taxAmount": totals.tax_amount,
            "total": totals.total,
            "invoiceDate": now.isoformat(),
            "dueDate": due_date(now.date(), prefs.terms).isoformat(),
            "terms": prefs.terms,
            "notes": prefs.invoice_notes or "",
            "createdBy": user_id,
        })

        for job in jobs:
            await self.store.update("jobs", job.id, {
                "invoiceStatus": "invoiced",
                "invoice": invoice["id"],
                "invoicedAt": now.isoformat(),
            })

        logger.info("Created invoice %s for %d job(s)", invoice["id"], len(jobs))
        return InvoiceGenerationResult(success=True, invoice=invoice)

    async def _load_jobs(self, job_ids: Sequence[str]) -> list[Job]:
        if not job_ids:
            raise ValueError("At least one job ID is required")

        jobs = []
        for job_id in job_ids:
            row = await self.store.find_by_id("jobs", job_id)
            if row is None:
                raise ValueError("One or more jobs not found")
            jobs.append(Job.model_validate(row))

        if len({job.client_id for job in jobs}) > 1:
            raise ValueError("All jobs must belong to the same client")

        invalid = [job.job_id or job.id for job in jobs if job.status != "done" or job.invoice_status != "ready"]
        if invalid:
            raise ValueError(
                f"Jobs must have status='done' and invoiceStatus='ready'. Invalid jobs: {', '.join(invalid)}"
            )
        return jobs

    async def _load_client(self, jobs: list[Job]) -> Client:
        client_id = jobs[0].client_id
        row = await self.store.find_by_id("clients", client_id) if client_id else None
        if row is None:
            raise ValueError("Client not found")
        return Client.model_validate(row)
