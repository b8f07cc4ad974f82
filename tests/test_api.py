"""
API Tests
=========
FastAPI endpoints with the plan store, the acting user and the settings
replaced through dependency overrides.
"""

import pytest
from fastapi.testclient import TestClient

from api.auth import AuthError, current_user_id, parse_bearer_token, resolve_user_id
from api.config import Settings, get_settings
from api.main import app, get_import_service
from services.import_service import SessionImportService

USER = "user-1"
LOCAL = Settings(environment="local", supabase_url="", max_upload_bytes=1024 * 1024, jwks_ttl_seconds=3600)
PRODUCTION = Settings(environment="production", supabase_url="", max_upload_bytes=1024 * 1024, jwks_ttl_seconds=3600)

CSV = b"Datum;Leistung;Anzahl\n15.03.2024;Massage;2\n16.03.2024;Massage;1\nbad;Massage;1\n"


@pytest.fixture
def client(plan_store):
    app.dependency_overrides[get_import_service] = lambda: SessionImportService(plan_store)
    app.dependency_overrides[current_user_id] = lambda: USER
    app.dependency_overrides[get_settings] = lambda: LOCAL
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(content=CSV, name="export.csv"):
    return {"file": (name, content, "text/csv")}


class TestTemplates:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_standard_template(self, client):
        resp = client.get("/v1/imports/templates/standard")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.startswith("Date,Therapy Type,Sessions")

    def test_unknown_template(self, client):
        assert client.get("/v1/imports/templates/other").status_code == 404


class TestSessionEndpoints:
    """Test suite for detect-mapping, preview and commit."""

    def test_detect_mapping(self, client):
        resp = client.post("/v1/imports/sessions/detect-mapping", files=_upload(), data={"delimiter": ";"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["headers"] == ["Datum", "Leistung", "Anzahl"]
        assert body["mapping"]["date_column"] == "Datum"
        assert body["complete"] is True
        assert body["row_count"] == 3

    def test_preview(self, client):
        resp = client.post(
            "/v1/imports/sessions/preview",
            files=_upload(),
            data={"delimiter": ";", "date_format": "DD.MM.YYYY"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["preview"]["valid_rows"] == 2
        assert body["preview"]["invalid_rows"] == 1
        assert body["rows"][0] == {"date": "2024-03-15", "therapy_type": "Massage", "sessions": 2}
        assert "field" in body["errors"][0]
        assert body["errors"][0]["row"] == 4

    def test_preview_with_bad_mapping_override(self, client):
        resp = client.post(
            "/v1/imports/sessions/preview",
            files=_upload(),
            data={"delimiter": ";", "sessions_column": "Menge"},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_MAPPING"

    def test_empty_file(self, client):
        resp = client.post("/v1/imports/sessions/detect-mapping", files=_upload(b""))
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "EMPTY_FILE"

    def test_invalid_delimiter(self, client):
        resp = client.post("/v1/imports/sessions/detect-mapping", files=_upload(), data={"delimiter": "|"})
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_CONFIG"

    def test_file_too_large(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(
            environment="local", supabase_url="", max_upload_bytes=10, jwks_ttl_seconds=3600
        )
        resp = client.post("/v1/imports/sessions/detect-mapping", files=_upload())
        assert resp.status_code == 413

    def test_commit(self, client, plan_store):
        resp = client.post("/v1/imports/sessions/commit", json={"rows": [
            {"date": "2024-03-15", "therapy_type": "Massage", "sessions": 2},
            {"date": "2024-03-16", "therapy_type": "Massage", "sessions": 1},
            {"date": "2024-03-16", "therapy_type": "Yoga", "sessions": 1},
        ]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["imported_count"] == 2
        assert body["skipped_count"] == 1
        assert body["missing"] == ["Yoga"]
        assert plan_store.plans_for(USER, "t-massage", "2024-03")[0]["actual_sessions"] == 3

    def test_commit_rejects_malformed_rows(self, client):
        resp = client.post("/v1/imports/sessions/commit", json={"rows": [
            {"date": "15.03.2024", "therapy_type": "Massage", "sessions": 2},
        ]})
        assert resp.status_code == 422

    def test_validate_therapy_types(self, client):
        resp = client.post("/v1/imports/therapy-types/validate", json={"names": ["Massage", "Yoga"]})
        assert resp.json() == {"missing": ["Yoga"], "existing": ["Massage"]}

    def test_database_error(self, client, plan_store):
        plan_store.fail_catalog = True
        resp = client.post("/v1/imports/therapy-types/validate", json={"names": ["Massage"]})
        assert resp.status_code == 503
        assert resp.json()["error_code"] == "DATABASE_ERROR"


class TestLatidoAndMaintenance:
    """Test suite for the invoice import, history and maintenance endpoints."""

    def _latido(self, make_xlsx):
        return make_xlsx([
            ["Rechnungsdatum", "Rechnungsnummer", "Gesamtbetrag (Netto)", "Zahlungsstatus"],
            ["15.03.2024", "R-001", 80, "Bezahlt"],
            ["16.03.2024", "R-002", 60, "Bezahlt"],
        ])

    def test_latido_import_and_history(self, client, plan_store, make_xlsx):
        files = {"file": ("latido.xlsx", self._latido(make_xlsx), "application/octet-stream")}
        resp = client.post("/v1/imports/latido", files=files)

        assert resp.status_code == 200
        body = resp.json()
        assert body["parse"]["session_count"] == 2
        assert body["result"]["imported_count"] == 2

        history = client.get("/v1/imports/history").json()
        assert history[0]["invoice_count"] == 2
        assert history[0]["total_amount"] == 140.0

        again = client.post("/v1/imports/latido", files=files).json()
        assert again["result"]["duplicate_count"] == 2
        assert plan_store.plans_for(USER, "t-psy", "2024-03")[0]["actual_sessions"] == 1

    def test_remove_invoice(self, client, plan_store, make_xlsx):
        client.post("/v1/imports/latido", files={"file": ("latido.xlsx", self._latido(make_xlsx), "x")})
        invoice_id = plan_store.invoices[0]["id"]

        resp = client.delete(f"/v1/imports/invoices/{invoice_id}")

        assert resp.status_code == 200
        assert resp.json()["plan"]["actual_sessions"] == 0
        assert client.delete(f"/v1/imports/invoices/{invoice_id}").status_code == 404

    def test_reset(self, client, plan_store):
        assert client.post("/v1/monthly-plans/reset",
                           json={"therapy_type_id": "t-massage", "month": "2024-03"}).status_code == 404

        plan_store.upsert_actual_sessions(USER, "t-massage", "2024-03", 8)
        resp = client.post("/v1/monthly-plans/reset", json={"therapy_type_id": "t-massage", "month": "2024-03"})
        assert resp.status_code == 200
        assert resp.json()["plan"]["actual_sessions"] is None

    def test_reset_validates_month(self, client):
        resp = client.post("/v1/monthly-plans/reset", json={"therapy_type_id": "t-massage", "month": "März"})
        assert resp.status_code == 422


class TestAuth:
    """Test suite for resolving the acting user."""

    @pytest.fixture
    def anonymous_client(self, plan_store):
        app.dependency_overrides[get_import_service] = lambda: SessionImportService(plan_store)
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_missing_token_rejected_outside_local(self, anonymous_client):
        app.dependency_overrides[get_settings] = lambda: PRODUCTION
        resp = anonymous_client.get("/v1/imports/history", params={"user_id": USER})
        assert resp.status_code == 401

    def test_query_user_id_in_local(self, anonymous_client):
        app.dependency_overrides[get_settings] = lambda: LOCAL
        resp = anonymous_client.get("/v1/imports/history", params={"user_id": USER})
        assert resp.status_code == 200
        assert resp.json() == []

    def test_malformed_header(self, anonymous_client):
        app.dependency_overrides[get_settings] = lambda: LOCAL
        resp = anonymous_client.get(
            "/v1/imports/history", params={"user_id": USER}, headers={"Authorization": "Basic abc"}
        )
        assert resp.status_code == 401

    def test_parse_bearer_token(self):
        assert parse_bearer_token("Bearer abc") == "abc"
        assert parse_bearer_token("bearer  abc ") == "abc"
        assert parse_bearer_token("Token abc") is None
        assert parse_bearer_token(None) is None

    def test_resolve_user_id_without_credentials(self):
        with pytest.raises(AuthError):
            resolve_user_id(None, None, LOCAL)
