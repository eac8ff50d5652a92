# app/dependencies.py

"""
Shared FastAPI dependencies.

Routers take the record store and invoice generator through these
providers, so tests can swap in fakes with ``app.dependency_overrides``.
"""

from fastapi import Depends

from app.database import RecordStore, SupabaseRecordStore
from app.core.invoicing import InvoiceGenerator, StoreInvoiceGenerator


def get_store() -> RecordStore:
    """Supabase-backed store; the client itself is created on first query."""
    return SupabaseRecordStore()


def get_invoice_generator(store: RecordStore = Depends(get_store)) -> InvoiceGenerator:
    return StoreInvoiceGenerator(store)
