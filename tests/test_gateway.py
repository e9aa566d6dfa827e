from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tender_gateway.app import create_app
from tender_gateway.error_text import READ_ONLY_MESSAGE
from tender_gateway.errors import ConfigurationError, LedgerInvocationError

from ledger_stub import StubLedger

NEW_TENDER = {"tenderId": "T1", "title": "Road", "department": "PWD", "estimatedValue": 50000}


def _client(ledger: StubLedger) -> TestClient:
    return TestClient(create_app(session_factory=ledger.factory()))


def test_healthz_ok() -> None:
    with _client(StubLedger()) as client:
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}


@pytest.mark.parametrize(
    "mode, expected",
    [
        ("authority", "Org1MSP (Procuring Authority)"),
        ("auditor", "Org2MSP (Auditor / Read-only)"),
    ],
)
def test_info_reports_mode(mode: str, expected: str) -> None:
    with _client(StubLedger()) as client:
        resp = client.get(f"/api/info?mode={mode}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["data"]["mode"] == mode
        assert body["data"]["authorityMode"] == expected
        assert body["data"]["note"] == "Chaincode enforces: Org1 can write; Org2 can read/audit only."


@pytest.mark.parametrize("mode", ["", "AUDITOR", "admin", None])
def test_info_mode_normalization(mode: str | None) -> None:
    with _client(StubLedger()) as client:
        url = "/api/info" if mode is None else f"/api/info?mode={mode}"
        data = client.get(url).json()["data"]
        assert data["mode"] == ("auditor" if mode == "AUDITOR" else "authority")


def test_create_tender_returns_ledger_record() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        resp = client.post("/api/tenders", json=NEW_TENDER)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        data = body["data"]
        assert {k: data[k] for k in NEW_TENDER} == NEW_TENDER
        assert data["status"] == "DRAFT"
        assert data["createdByOrg"] == "Org1MSP"
    assert ledger.calls == [("submit", "CreateTender", ["T1", "Road", "PWD", "50000"], "Org1MSP")]


@pytest.mark.parametrize("missing", ["tenderId", "title", "department", "estimatedValue"])
def test_create_tender_missing_field_is_rejected_before_ledger(missing: str) -> None:
    ledger = StubLedger()
    body = {k: v for k, v in NEW_TENDER.items() if k != missing}
    with _client(ledger) as client:
        resp = client.post("/api/tenders", json=body)
        assert resp.status_code == 400
        assert resp.json() == {
            "ok": False,
            "error": "Missing fields: tenderId, title, department, estimatedValue",
        }
    assert ledger.calls == []
    assert ledger.channel_opens == 0


def test_create_tender_accepts_zero_value() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        resp = client.post("/api/tenders", json={**NEW_TENDER, "estimatedValue": 0})
        assert resp.status_code == 200
    assert ledger.calls[0][2][-1] == "0"


def test_create_tender_rejects_blank_and_non_object_bodies() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        assert client.post("/api/tenders", json={**NEW_TENDER, "title": ""}).status_code == 400
        assert client.post("/api/tenders").status_code == 400
        resp = client.post("/api/tenders", json=["T1"])
        assert resp.status_code == 400
        assert resp.json()["error"] == "request body must be a JSON object"
        resp = client.post("/api/tenders", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400
    assert ledger.calls == []


def test_tender_lifecycle_and_audit_trail() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        client.post("/api/tenders", json=NEW_TENDER)
        published = client.post("/api/tenders/T1/publish").json()
        assert published["data"]["status"] == "PUBLISHED"
        awarded = client.post("/api/tenders/T1/award", json={"awardedToOrg": "Org3", "remarks": "lowest bid"}).json()
        assert awarded["data"]["status"] == "AWARDED"
        read = client.get("/api/tenders/T1?mode=auditor").json()
        assert read == {"ok": True, "data": awarded["data"]}
        listing = client.get("/api/tenders?mode=auditor").json()
        assert [t["tenderId"] for t in listing["data"]] == ["T1"]
        audit = client.get("/api/tenders/T1/audit?mode=auditor").json()
        assert [entry["action"] for entry in audit["data"]] == ["CREATE", "PUBLISH", "AWARD"]
    assert ("submit", "AwardTender", ["T1", "Org3", "lowest bid"], "Org1MSP") in ledger.calls


def test_award_without_remarks_sends_empty_string() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        client.post("/api/tenders", json=NEW_TENDER)
        resp = client.post("/api/tenders/T1/award", json={"awardedToOrg": "Org3"})
        assert resp.status_code == 200
    assert ledger.calls[-1] == ("submit", "AwardTender", ["T1", "Org3", ""], "Org1MSP")


def test_award_and_cancel_require_fields() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        resp = client.post("/api/tenders/T1/award", json={"remarks": "x"})
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "awardedToOrg is required"}
        resp = client.post("/api/tenders/T1/cancel", json={})
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "reason is required"}
    assert ledger.calls == []


def test_cancel_tender() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        client.post("/api/tenders", json=NEW_TENDER)
        resp = client.post("/api/tenders/T1/cancel", json={"reason": "budget withdrawn"})
        assert resp.json()["data"]["status"] == "CANCELLED"


@pytest.mark.parametrize(
    "method, path, body",
    [
        ("post", "/api/tenders", NEW_TENDER),
        ("post", "/api/tenders/T1/publish", None),
        ("post", "/api/tenders/T1/award", {"awardedToOrg": "Org3"}),
        ("post", "/api/tenders/T1/cancel", {"reason": "no"}),
    ],
)
def test_auditor_writes_are_denied(method: str, path: str, body: dict | None) -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        resp = getattr(client, method)(f"{path}?mode=auditor", json=body)
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": READ_ONLY_MESSAGE}
    assert ledger.calls[0][3] == "Org2MSP"


def test_audit_trail_empty_list_is_data() -> None:
    with _client(StubLedger()) as client:
        resp = client.get("/api/tenders/T1/audit")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "data": []}


def test_missing_tender_error_is_reported_without_prefix() -> None:
    with _client(StubLedger()) as client:
        resp = client.get("/api/tenders/T9")
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "tender T9 does not exist"}


def test_undecodable_ledger_reply_is_a_failure() -> None:
    ledger = StubLedger()
    ledger.raw_reply = b"not json\0\0"
    with _client(ledger) as client:
        resp = client.get("/api/tenders")
        assert resp.status_code == 403
        assert resp.json()["ok"] is False
        assert resp.json()["error"].startswith("ledger response is not JSON")


def test_non_finite_ledger_value_stays_in_envelope() -> None:
    ledger = StubLedger()
    ledger.raw_reply = b'{"tenderId":"T1","estimatedValue":NaN}\0'
    with _client(ledger) as client:
        resp = client.get("/api/tenders/T1")
        assert resp.status_code == 403
        assert resp.headers["content-type"] == "application/json"
        assert resp.json() == {"ok": False, "error": "ledger response contains non-finite number NaN"}
    assert ledger.channel_opens == ledger.channel_closes == 1


def test_configuration_error_is_reported() -> None:
    ledger = StubLedger()
    ledger.identity_error = ConfigurationError("Fabric directory not found: /fabric/org1/signcerts")
    with _client(ledger) as client:
        resp = client.get("/api/tenders")
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "Fabric directory not found: /fabric/org1/signcerts"}
    assert ledger.channel_opens == 0


def test_unexpected_error_is_contained() -> None:
    ledger = StubLedger()
    ledger.fail_with = KeyError("boom")
    with _client(ledger) as client:
        resp = client.get("/api/tenders")
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "'boom'"}


def test_every_session_is_closed_exactly_once() -> None:
    ledger = StubLedger()
    with _client(ledger) as client:
        client.post("/api/tenders", json=NEW_TENDER)
        client.post("/api/tenders/T1/publish?mode=auditor")
        client.get("/api/tenders/T404")
        client.get("/api/tenders/T1/audit")
        ledger.raw_reply = b"\0\0"
        client.get("/api/tenders")
        ledger.raw_reply = None
        ledger.fail_with = LedgerInvocationError("deadline exceeded", code="DEADLINE_EXCEEDED")
        client.post("/api/tenders/T1/cancel", json={"reason": "late"})
        ledger.fail_with = None
        client.post("/api/tenders", json={"title": "missing"})
    assert ledger.channel_opens == 6
    assert ledger.channel_opens == ledger.channel_closes
    assert ledger.connection_opens == ledger.connection_closes


def test_close_failure_does_not_change_response() -> None:
    ledger = StubLedger()
    ledger.fail_on_close = True
    with _client(ledger) as client:
        resp = client.get("/api/tenders")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "data": []}
    assert ledger.connection_closes == 1
    assert ledger.channel_closes == 1


def test_request_id_is_echoed() -> None:
    with _client(StubLedger()) as client:
        resp = client.get("/api/info", headers={"x-request-id": "req-1"})
        assert resp.headers["x-request-id"] == "req-1"
