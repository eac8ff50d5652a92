# tests/conftest.py

"""
Shared fixtures: an in-memory record store and record factories.
"""

import copy
import itertools
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from app.core.invoicing import StoreInvoiceGenerator
from app.database import NOT_NULL


# ============================================
# In-memory store
# ============================================

def _ref(value: Any) -> Any:
    if isinstance(value, dict) and "id" in value:
        return value["id"]
    return value


def _is_null(value: Any) -> bool:
    return value is None or value == "" or value == []


def matches_filters(record: dict, filters: Optional[dict]) -> bool:
    for field, expected in (filters or {}).items():
        actual = _ref(record.get(field))
        if expected is NOT_NULL:
            if _is_null(actual):
                return False
        elif expected is None:
            if not _is_null(actual):
                return False
        elif isinstance(expected, (list, tuple, set)):
            if str(actual) not in {str(e) for e in expected}:
                return False
        elif str(actual) != str(expected):
            return False
    return True


class InMemoryRecordStore:
    """RecordStore over plain dicts; records every write for assertions."""

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.failing_updates: set[tuple[str, str]] = set()
        self._ids = itertools.count(1)

    def add(self, table: str, record: dict) -> dict:
        self.tables.setdefault(table, {})[str(record["id"])] = copy.deepcopy(record)
        return record

    def get(self, table: str, record_id: str) -> Optional[dict]:
        return self.tables.get(table, {}).get(record_id)

    async def find(self, table: str, filters: Optional[dict] = None, limit: Optional[int] = None) -> list[dict]:
        rows = sorted(self.tables.get(table, {}).items())
        found = [copy.deepcopy(r) for _, r in rows if matches_filters(r, filters)]
        return found[:limit] if limit else found

    async def find_by_id(self, table: str, record_id: str) -> Optional[dict]:
        record = self.get(table, str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def update(self, table: str, record_id: str, patch: dict, expected: Optional[dict] = None) -> Optional[dict]:
        if (table, record_id) in self.failing_updates:
            raise RuntimeError(f"write to {table}/{record_id} failed")
        record = self.get(table, record_id)
        if record is None or not matches_filters(record, expected):
            return None
        record.update(copy.deepcopy(patch))
        self.writes.append(("update", table, record_id))
        return copy.deepcopy(record)

    async def create(self, table: str, data: dict) -> dict:
        record = {"id": f"{table}-{next(self._ids)}", **copy.deepcopy(data)}
        self.tables.setdefault(table, {})[record["id"]] = record
        self.writes.append(("create", table, record["id"]))
        return copy.deepcopy(record)


# ============================================
# Record factories
# ============================================

def make_client(id: str = "c1", name: str = "Acme Realty", tax_rate: float = 0.0, **extra) -> dict:
    return {
        "id": id,
        "companyName": name,
        "invoicingPreferences": {"taxRate": tax_rate, "terms": "net-30"},
        **extra,
    }


def make_product(id: str = "p1", price: float = 500.0, **extra) -> dict:
    return {"id": id, "name": "3D Capture", "basePrice": price, "taxable": True, **extra}


def make_job(
    id: str,
    client: str = "c1",
    completed_at: Optional[str] = None,
    target_date: Optional[str] = None,
    product: str = "p1",
    amount: Optional[float] = None,
    **extra,
) -> dict:
    item = {"product": product, "quantity": 1}
    if amount is not None:
        item["amount"] = amount
    return {
        "id": id,
        "jobId": extra.pop("jobId", id.upper()),
        "client": client,
        "status": "done",
        "invoiceStatus": "ready",
        "invoice": None,
        "completedAt": completed_at,
        "targetDate": target_date,
        "lineItems": [item],
        **extra,
    }


def make_payment(id: str, amount: float, payment_date: str, client: str = "c1", **extra) -> dict:
    return {
        "id": id,
        "client": client,
        "amount": amount,
        "paymentDate": payment_date,
        "status": "unmatched",
        **extra,
    }


def make_invoice(id: str, total: float, invoice_date: str, client: str = "c1", jobs=None, **extra) -> dict:
    return {
        "id": id,
        "invoiceNumber": id.upper(),
        "client": client,
        "invoiceDate": invoice_date,
        "total": total,
        "status": "sent",
        "jobs": jobs or [],
        **extra,
    }


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def store():
    store = InMemoryRecordStore()
    store.add("clients", make_client())
    store.add("products", make_product())
    return store


@pytest.fixture
def invoice_generator(store):
    return StoreInvoiceGenerator(store)


@pytest.fixture
def api(store):
    from app.main import app
    from app.dependencies import get_store

    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
