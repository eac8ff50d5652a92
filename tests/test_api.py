# tests/test_api.py

"""
Tests for the HTTP routes, run against the in-memory store.
"""

from conftest import make_client, make_invoice, make_job, make_payment


PARTNER_CSV = (
    "Record Number,Job ID,Capture Address,CT Rate\n"
    "R1,4821,123 Main St,$150.00\n"
)


class TestHealth:

    def test_health(self, api):
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_reports_store_configuration(self, api):
        response = api.get("/ready")
        assert response.status_code == 200
        assert "database" in response.json()["checks"]


class TestPaymentRoutes:

    def test_candidates(self, api, store):
        store.add("payments", make_payment("pay1", 500, "2025-03-10"))
        store.add("jobs", make_job("j1", completed_at="2025-03-08"))

        response = api.get("/payments/candidates", params={"paymentId": "pay1"})

        assert response.status_code == 200
        body = response.json()
        assert body["paymentId"] == "pay1"
        assert body["candidates"][0]["quotedTotal"] == 500.0
        assert body["candidates"][0]["confidence"] == "high"

    def test_candidates_without_payment_id(self, api):
        response = api.get("/payments/candidates")
        assert response.status_code == 400
        assert response.json() == {"detail": "paymentId is required"}

    def test_candidates_unknown_payment(self, api):
        response = api.get("/payments/candidates", params={"paymentId": "nope"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Payment not found"

    def test_confirm(self, api, store):
        store.add("payments", make_payment("pay1", 500, "2025-03-10"))
        store.add("jobs", make_job("j1", completed_at="2025-03-08"))

        response = api.post("/payments/confirm", json={"paymentId": "pay1", "jobId": "j1", "userId": "u1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["payment"] == {"id": "pay1", "amount": 500.0}
        assert store.get("payments", "pay1")["status"] == "matched"

    def test_confirm_missing_fields(self, api):
        response = api.post("/payments/confirm", json={"paymentId": "pay1"})
        assert response.status_code == 400

    def test_auto_match_preview_and_apply(self, api, store):
        store.add("payments", make_payment("pay1", 500, "2025-03-10"))
        store.add("jobs", make_job("j1", completed_at="2025-03-08"))

        preview = api.get("/payments/auto-match").json()
        assert preview["summary"]["high"] == 1
        assert preview["results"][0]["candidateId"] == "j1"

        applied = api.post("/payments/auto-match", json={"userId": "u1", "minConfidence": "high"}).json()
        assert applied["applied"] == 1
        assert applied["minConfidence"] == "high"

    def test_import_csv(self, api, store):
        csv_text = "Date,Amount,Reference\n2025-03-10,$500.00,CHK-1\n"

        response = api.post(
            "/payments/import-csv",
            files={"csv": ("payments.csv", csv_text, "text/csv")},
            data={"clientId": "c1", "userId": "u1"},
        )

        assert response.status_code == 200
        assert response.json()["created"] == 1

    def test_import_csv_without_client(self, api):
        response = api.post(
            "/payments/import-csv",
            files={"csv": ("payments.csv", "Date,Amount\n2025-03-10,5\n", "text/csv")},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "clientId is required"


class TestInvoiceRoutes:

    def test_preview(self, api, store):
        store.add("jobs", make_job("j1", target_date="2025-03-01"))
        store.add("invoices", make_invoice("inv-1", 500, "2025-03-02"))

        body = api.get("/invoices/auto-match").json()

        assert body["results"][0]["candidateId"] == "inv-1"
        assert body["unmatchedCandidateIds"] == []

    def test_apply_with_query_min_confidence(self, api, store):
        store.add("jobs", make_job("j1", target_date="2025-03-01"))
        store.add("invoices", make_invoice("inv-1", 500, "2025-03-20"))

        body = api.post("/invoices/auto-match", params={"minConfidence": "medium"}).json()

        assert body["applied"] == 1
        assert store.get("invoices", "inv-1")["jobs"] == ["j1"]

    def test_apply_invalid_min_confidence(self, api):
        response = api.post("/invoices/auto-match", params={"minConfidence": "sometimes"})
        assert response.status_code == 400


class TestPartnerImportRoute:

    def test_preview(self, api, store):
        store.add("clients", make_client("mp", "Matterport Inc"))
        store.add("jobs", make_job("mp1", client="mp", jobId="AP-4821"))

        response = api.post(
            "/import/partner-jobs",
            files={"file": ("export.csv", PARTNER_CSV, "text/csv")},
            data={"action": "preview"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalRows"] == 1
        assert body["matchSet"]["results"][0]["candidateId"] == "mp1"

    def test_apply_selected(self, api, store):
        store.add("clients", make_client("mp", "Matterport Inc"))
        store.add("jobs", make_job("mp1", client="mp", jobId="AP-4821"))

        response = api.post(
            "/import/partner-jobs",
            files={"file": ("export.csv", PARTNER_CSV, "text/csv")},
            data={"action": "apply", "selectedMatches": '["mp1"]'},
        )

        assert response.status_code == 200
        assert response.json()["updated"] == 1
        assert store.get("jobs", "mp1")["lineItems"][0]["amount"] == 150.0

    def test_invalid_action(self, api):
        response = api.post(
            "/import/partner-jobs",
            files={"file": ("export.csv", PARTNER_CSV, "text/csv")},
            data={"action": "delete"},
        )
        assert response.status_code == 400

    def test_bad_selection(self, api, store):
        store.add("clients", make_client("mp", "Matterport Inc"))

        response = api.post(
            "/import/partner-jobs",
            files={"file": ("export.csv", PARTNER_CSV, "text/csv")},
            data={"action": "apply", "selectedMatches": "mp1"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "selectedMatches must be a JSON array"

    def test_missing_file(self, api):
        response = api.post("/import/partner-jobs", data={"action": "preview"})
        assert response.status_code == 400
        assert response.json()["detail"] == "No file provided"
