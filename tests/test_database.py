# tests/test_database.py

"""
Tests for the Supabase adapter, run against a recording fake client.
"""

import threading

from app.database import NOT_NULL, SupabaseRecordStore


class FakeQuery:
    """Chains like a postgrest builder and records every call."""

    def __init__(self, client, table):
        self.client = client
        self.calls = [("table", table)]
        client.queries.append(self)

    def __getattr__(self, name):
        def call(*args):
            self.calls.append((name, *args))
            return self
        return call

    @property
    def not_(self):
        self.calls.append(("not_",))
        return self

    def execute(self):
        self.client.execute_threads.append(threading.get_ident())
        return FakeResponse(self.client.data)


class FakeResponse:

    def __init__(self, data):
        self.data = data


class FakeClient:

    def __init__(self, data=None):
        self.data = data if data is not None else []
        self.queries = []
        self.execute_threads = []

    def table(self, name):
        return FakeQuery(self, name)


class TestSupabaseRecordStore:

    async def test_filters_map_to_query_builder(self):
        client = FakeClient([{"id": "pay1"}])
        store = SupabaseRecordStore(client)

        rows = await store.find(
            "payments",
            {"status": "unmatched", "matchedJob": NOT_NULL, "matchedInvoice": None, "client": ["c1", "c2"]},
            limit=25,
        )

        assert rows == [{"id": "pay1"}]
        assert client.queries[0].calls == [
            ("table", "payments"),
            ("select", "*"),
            ("eq", "status", "unmatched"),
            ("not_",),
            ("is_", "matchedJob", "null"),
            ("is_", "matchedInvoice", "null"),
            ("in_", "client", ["c1", "c2"]),
            ("order", "id"),
            ("limit", 25),
        ]

    async def test_queries_run_off_the_event_loop_thread(self):
        client = FakeClient([{"id": "j1"}])
        store = SupabaseRecordStore(client)

        await store.find("jobs")
        await store.find_by_id("jobs", "j1")
        await store.update("jobs", "j1", {"invoiceStatus": "paid"})
        await store.create("jobs", {"jobId": "J2"})

        assert len(client.execute_threads) == 4
        assert threading.get_ident() not in client.execute_threads

    async def test_conditional_update_that_matches_nothing(self):
        client = FakeClient([])
        store = SupabaseRecordStore(client)

        result = await store.update("payments", "pay1", {"status": "matched"}, expected={"status": "unmatched"})

        assert result is None
        assert client.queries[0].calls == [
            ("table", "payments"),
            ("update", {"status": "matched"}),
            ("eq", "id", "pay1"),
            ("eq", "status", "unmatched"),
        ]

    async def test_find_by_id_missing(self):
        store = SupabaseRecordStore(FakeClient([]))
        assert await store.find_by_id("jobs", "nope") is None
