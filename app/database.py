# app/database.py

"""
Record store backed by Supabase.

The matching workflow only needs four calls (find, find_by_id, update,
create); anything providing them can stand in for Supabase. The supabase
client is synchronous, so queries run in the threadpool.
"""

from functools import lru_cache
from typing import Any, Optional, Protocol
import logging

from fastapi.concurrency import run_in_threadpool
from supabase import create_client, Client

from app.config import get_settings

logger = logging.getLogger(__name__)


class _NotNull:
    def __repr__(self) -> str:
        return "NOT_NULL"


# Filter value meaning "field is set".
NOT_NULL = _NotNull()

Filters = dict[str, Any]


class RecordStore(Protocol):
    """Persistence contract consumed by the reconciliation workflow."""

    async def find(self, table: str, filters: Optional[Filters] = None, limit: Optional[int] = None) -> list[dict]:
        ...

    async def find_by_id(self, table: str, record_id: str) -> Optional[dict]:
        ...

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict,
        expected: Optional[Filters] = None,
    ) -> Optional[dict]:
        """Apply ``patch``; returns None when ``expected`` no longer holds."""
        ...

    async def create(self, table: str, data: dict) -> dict:
        ...


# ============================================
# Supabase
# ============================================

@lru_cache()
def get_supabase() -> Client:
    """Service-role client, created on first use."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


class SupabaseRecordStore:
    """RecordStore over Supabase tables named after the collections."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    @staticmethod
    def _apply_filters(query, filters: Optional[Filters]):
        for field, expected in (filters or {}).items():
            if expected is NOT_NULL:
                query = query.not_.is_(field, "null")
            elif expected is None:
                query = query.is_(field, "null")
            elif isinstance(expected, (list, tuple, set)):
                query = query.in_(field, list(expected))
            else:
                query = query.eq(field, expected)
        return query

    async def find(self, table: str, filters: Optional[Filters] = None, limit: Optional[int] = None) -> list[dict]:
        query = self._apply_filters(self.client.table(table).select("*"), filters)
        query = query.order("id")
        if limit:
            query = query.limit(limit)
        response = await run_in_threadpool(query.execute)
        return response.data or []

    async def find_by_id(self, table: str, record_id: str) -> Optional[dict]:
        query = self.client.table(table).select("*").eq("id", record_id)
        response = await run_in_threadpool(query.execute)
        return response.data[0] if response.data else None

    async def update(
        self,
        table: str,
        record_id: str,
        patch: dict,
        expected: Optional[Filters] = None,
    ) -> Optional[dict]:
        query = self.client.table(table).update(patch).eq("id", record_id)
        query = self._apply_filters(query, expected)
        response = await run_in_threadpool(query.execute)
        if not response.data:
            logger.info("Conditional update on %s/%s matched nothing", table, record_id)
            return None
        return response.data[0]

    async def create(self, table: str, data: dict) -> dict:
        query = self.client.table(table).insert(data)
        response = await run_in_threadpool(query.execute)
        return response.data[0] if response.data else None
