# app/models/records.py

"""
Store records as the matching engine sees them.

Rows come from the record store with camelCase keys and relations that are
either raw ids or expanded objects; validators flatten both to string ids.
"""

from datetime import date, datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.normalizers import (
    normalize_amount,
    normalize_datetime,
    normalize_relation_id,
)


class StoreModel(BaseModel):
    """Base for records read from the store (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )


# ============================================
# Clients & products
# ============================================

class InvoicingPreferences(StoreModel):
    tax_exempt: bool = False
    tax_rate: float = 0.0
    terms: str = "net-30"
    invoice_notes: Optional[str] = None

    @field_validator("tax_exempt", mode="before")
    @classmethod
    def coerce_exempt(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("tax_rate", mode="before")
    @classmethod
    def coerce_rate(cls, v: Any) -> float:
        return normalize_amount(v)

    @field_validator("terms", mode="before")
    @classmethod
    def default_terms(cls, v: Any) -> str:
        return v or "net-30"

    @property
    def effective_tax_rate(self) -> float:
        return 0.0 if self.tax_exempt else max(self.tax_rate, 0.0)


class Client(StoreModel):
    id: str
    company_name: Optional[str] = None
    invoicing_preferences: InvoicingPreferences = Field(default_factory=InvoicingPreferences)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return normalize_relation_id(v)

    @field_validator("invoicing_preferences", mode="before")
    @classmethod
    def empty_preferences(cls, v: Any) -> Any:
        return v or {}


class Product(StoreModel):
    id: str
    name: str = ""
    base_price: float = 0.0
    unit_type: Optional[str] = None
    taxable: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return normalize_relation_id(v)

    @field_validator("base_price", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> float:
        return normalize_amount(v)

    @field_validator("taxable", mode="before")
    @classmethod
    def unset_is_taxable(cls, v: Any) -> bool:
        return v is not False


class LineItem(StoreModel):
    """A job line item; ``product`` may arrive expanded or as an id."""

    product_id: Optional[str] = None
    product: Optional[Product] = None
    quantity: float = 1
    amount: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def split_product(cls, data: Any) -> Any:
        if isinstance(data, dict) and "product" in data:
            data = dict(data)
            product = data["product"]
            data["productId"] = normalize_relation_id(product)
            data["product"] = product if isinstance(product, dict) else None
        return data

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, v: Any) -> float:
        return normalize_amount(v) or 1


# ============================================
# Candidate records
# ============================================

class Job(StoreModel):
    id: str
    job_id: Optional[str] = None
    client_id: Optional[str] = Field(default=None, alias="client")
    status: Optional[str] = None
    invoice_status: Optional[str] = None
    invoice_id: Optional[str] = Field(default=None, alias="invoice")
    target_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    capture_address: Optional[str] = None
    model_name: Optional[str] = None
    sq_ft: Optional[float] = None
    line_items: list[LineItem] = Field(default_factory=list)
    ap_invoice_number: Optional[str] = None

    @field_validator("id", "client_id", "invoice_id", mode="before")
    @classmethod
    def coerce_relations(cls, v: Any) -> Any:
        return normalize_relation_id(v)

    @field_validator("target_date", "completed_at", mode="before")
    @classmethod
    def coerce_dates(cls, v: Any) -> Optional[datetime]:
        return normalize_datetime(v)

    @field_validator("job_id", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("line_items", mode="before")
    @classmethod
    def empty_items(cls, v: Any) -> Any:
        return v or []

    @property
    def is_unbilled(self) -> bool:
        """Done, ready to invoice, and not yet linked to an invoice."""
        return self.status == "done" and self.invoice_status == "ready" and not self.invoice_id


class Invoice(StoreModel):
    id: str
    invoice_number: Optional[str] = None
    client_id: Optional[str] = Field(default=None, alias="client")
    invoice_date: Optional[datetime] = None
    total: float = 0.0
    status: Optional[str] = None
    job_ids: list[str] = Field(default_factory=list, alias="jobs")

    @field_validator("id", "client_id", mode="before")
    @classmethod
    def coerce_relations(cls, v: Any) -> Any:
        return normalize_relation_id(v)

    @field_validator("invoice_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[datetime]:
        return normalize_datetime(v)

    @field_validator("total", mode="before")
    @classmethod
    def coerce_total(cls, v: Any) -> float:
        return normalize_amount(v)

    @field_validator("job_ids", mode="before")
    @classmethod
    def coerce_jobs(cls, v: Any) -> list[str]:
        ids = (normalize_relation_id(x) for x in (v or []))
        return [j for j in ids if j]


# ============================================
# Source records
# ============================================

class Payment(StoreModel):
    id: str
    client_id: Optional[str] = Field(default=None, alias="client")
    amount: float = 0.0
    payment_date: Optional[datetime] = None
    status: Optional[str] = "unmatched"
    reference_number: Optional[str] = None
    matched_job: Optional[str] = None
    matched_invoice: Optional[str] = None

    @field_validator("id", "client_id", "matched_job", "matched_invoice", mode="before")
    @classmethod
    def coerce_relations(cls, v: Any) -> Any:
        return normalize_relation_id(v)

    @field_validator("payment_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[datetime]:
        return normalize_datetime(v)

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return normalize_amount(v)


class PartnerRow(StoreModel):
    """One row of a partner's job export."""

    row_number: int
    client_id: Optional[str] = None
    record_number: str = ""
    job_id: str = ""
    ap_invoice_number: str = ""
    capture_address: str = ""
    floor_unit: str = ""
    ct_rate: float = 0.0
    ct_travel_payout: float = 0.0
    ct_off_hours_payout: float = 0.0
    project_name: str = ""
    mp_client: str = ""
    job_scheduled_date_time: str = ""

    @property
    def source_id(self) -> str:
        """Unique within one file; record numbers can repeat."""
        return f"row-{self.row_number}"


class PaymentRow(StoreModel):
    """One row of a bank or remittance export."""

    row_number: int
    amount: float
    payment_date: date
    reference_number: str = ""
    notes: str = ""
