"""HTTP surface: status codes and payload shapes."""

from datetime import timedelta

from cashledger.services import reconciliation_service
from cashledger.services.concurrency import single_flight
from cashledger.validation import ValidationError


def _open(client, facility_id, cents=1000):
    return client.post("/api/registers/open", json={
        "facility_id": facility_id,
        "operator_id": 5,
        "opening_cash_cents": cents,
    })


def test_health(client, db_session):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["checks"]["database"]["status"] == "healthy"


def test_open_and_current(client, facility):
    response = _open(client, facility.id)
    assert response.status_code == 201
    session = response.get_json()["session"]
    assert session["status"] == "OPEN"
    assert session["expected_cash_cents"] == 1000

    response = client.get(f"/api/registers/current?facility_id={facility.id}")
    assert response.status_code == 200
    assert response.get_json()["session"]["id"] == session["id"]


def test_current_without_open_register(client, facility):
    response = client.get(f"/api/registers/current?facility_id={facility.id}")

    assert response.status_code == 200
    assert response.get_json()["session"] is None


def test_current_unknown_facility(client, db_session):
    assert client.get("/api/registers/current?facility_id=999").status_code == 404
    assert client.get("/api/registers/current").status_code == 400


def test_second_open_is_409(client, facility):
    _open(client, facility.id)

    assert _open(client, facility.id).status_code == 409


def test_open_validation(client, facility):
    assert _open(client, facility.id, cents=-1).status_code == 400
    assert _open(client, facility.id, cents="10.50").status_code == 400
    assert client.post("/api/registers/open", json={}).status_code == 400


def test_close_flow(client, facility):
    session_id = _open(client, facility.id).get_json()["session"]["id"]
    client.post("/api/movements", json={
        "session_id": session_id,
        "movement_type": "sale",
        "amount_cents": 500,
        "payment_method": "cash",
    })

    response = client.post(f"/api/registers/{session_id}/close", json={"counted_cash_cents": 1450})
    assert response.status_code == 200
    closed = response.get_json()["session"]
    assert closed["status"] == "CLOSED"
    assert closed["expected_cash_cents"] == 1500
    assert closed["variance_cents"] == -50

    again = client.post(f"/api/registers/{session_id}/close", json={"counted_cash_cents": 1450})
    assert again.status_code == 409

    assert client.post("/api/registers/999/close", json={"counted_cash_cents": 0}).status_code == 404
    assert client.post(f"/api/registers/{session_id}/close", json={}).status_code == 400


def test_record_movement_routes(client, facility):
    session_id = _open(client, facility.id).get_json()["session"]["id"]

    response = client.post("/api/movements", json={
        "facility_id": facility.id,
        "movement_type": "expense",
        "amount_cents": 200,
        "payment_method": "cash",
        "expense_category": "supplies",
    })
    assert response.status_code == 201
    assert response.get_json()["movement"]["register_session_id"] == session_id

    bad = client.post("/api/movements", json={
        "session_id": session_id,
        "movement_type": "sale",
        "amount_cents": 0,
        "payment_method": "cash",
    })
    assert bad.status_code == 400

    missing = client.post("/api/movements", json={"movement_type": "sale", "amount_cents": 1, "payment_method": "cash"})
    assert missing.status_code == 400

    unknown = client.post("/api/movements", json={
        "session_id": 999,
        "movement_type": "sale",
        "amount_cents": 100,
        "payment_method": "cash",
    })
    assert unknown.status_code == 404


def test_record_on_closed_session_is_409(client, facility):
    session_id = _open(client, facility.id).get_json()["session"]["id"]
    client.post(f"/api/registers/{session_id}/close", json={"counted_cash_cents": 1000})

    response = client.post("/api/movements", json={
        "session_id": session_id,
        "movement_type": "sale",
        "amount_cents": 100,
        "payment_method": "cash",
    })
    assert response.status_code == 409


def test_list_movements_route(client, facility):
    session_id = _open(client, facility.id).get_json()["session"]["id"]
    for amount in (100, 200, 300):
        client.post("/api/movements", json={
            "session_id": session_id,
            "movement_type": "sale",
            "amount_cents": amount,
            "payment_method": "card",
        })

    response = client.get(f"/api/movements?session_id={session_id}&movement_type=sale&limit=2")
    payload = response.get_json()
    assert response.status_code == 200
    assert payload["total"] == 3
    assert len(payload["items"]) == 2

    assert client.get("/api/movements").status_code == 400


def test_history_report_export_and_recompute(client, facility, make_session, add_movement, base_time):
    session = make_session(facility, base_time, base_time + timedelta(hours=4), opening_cash_cents=100)
    add_movement(session, "sale", 400, "cash", registered_at=base_time + timedelta(minutes=1))
    add_movement(session, "expense", 50, "cash", registered_at=base_time + timedelta(minutes=2),
                 expense_category="cleaning")

    recomputed = client.post(f"/api/registers/{session.id}/recompute")
    assert recomputed.status_code == 200
    assert recomputed.get_json()["session"]["expected_cash_cents"] == 450

    history = client.get(f"/api/registers/history?facility_id={facility.id}&status=CLOSED").get_json()
    assert history["total"] == 1
    assert history["items"][0]["id"] == session.id

    assert client.get("/api/registers/history?status=bogus").status_code == 400

    report = client.get(f"/api/registers/{session.id}/report").get_json()
    assert report["by_kind"]["sale"] == {"count": 1, "total_cents": 400}
    assert report["expenses_by_category"]["cleaning"]["total_cents"] == 50

    export = client.get(f"/api/registers/export?facility_id={facility.id}")
    assert export.status_code == 200
    assert export.mimetype == "text/csv"
    lines = export.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("session_id,facility_id,opened_at")
    assert len(lines) == 2

    assert client.get(f"/api/registers/{session.id}").status_code == 200
    assert client.get("/api/registers/999").status_code == 404
    assert client.get("/api/registers/999/report").status_code == 404
    assert client.post("/api/registers/999/recompute").status_code == 404


def test_reconciliation_requires_confirmation(client, facility):
    response = client.post("/api/reconciliation", json={"facility_id": facility.id})

    assert response.status_code == 400


def test_reconciliation_dry_run_and_confirm(client, facility, make_session, make_booking_payment, base_time):
    make_session(facility, base_time, base_time + timedelta(hours=4))
    make_booking_payment(facility, 500, base_time + timedelta(hours=1))

    dry = client.post("/api/reconciliation", json={"facility_id": facility.id, "dry_run": True})
    assert dry.status_code == 200
    assert dry.get_json()["report"]["dry_run"] is True
    assert dry.get_json()["report"]["movements_created"] == 1

    real = client.post("/api/reconciliation", json={"facility_id": facility.id, "confirm": True})
    assert real.status_code == 200
    assert real.get_json()["report"]["movements_created"] == 1
    assert real.get_json()["report"]["reversible"] is False

    again = client.post("/api/reconciliation", json={"facility_id": facility.id, "confirm": True})
    assert again.get_json()["report"]["movements_created"] == 0


def test_reconciliation_unknown_facility(client, db_session):
    response = client.post("/api/reconciliation", json={"facility_id": 999, "confirm": True})

    assert response.status_code == 404


def test_reconciliation_conflict_while_running(client, facility):
    with single_flight(facility.id):
        response = client.post("/api/reconciliation", json={"facility_id": facility.id, "confirm": True})

    assert response.status_code == 409


def test_reconciliation_reports_bad_amounts(client, facility, make_session, make_booking_payment, base_time):
    make_session(facility, base_time, base_time + timedelta(hours=4))
    make_booking_payment(facility, 500, base_time + timedelta(hours=1))
    make_booking_payment(facility, 0, base_time + timedelta(hours=2))

    response = client.post("/api/reconciliation", json={"facility_id": facility.id, "confirm": True})

    assert response.status_code == 200
    report = response.get_json()["report"]
    assert report["movements_created"] == 1
    assert report["skipped_invalid_amount"] == 1
    assert report["invalid"][0]["amount_cents"] == 0


def test_reconciliation_validation_error_is_400(client, facility, monkeypatch):
    def rejects(facility_id, *, touched_only=False, dry_run=False):
        raise ValidationError("bad scope")

    monkeypatch.setattr(reconciliation_service, "reconcile", rejects)

    response = client.post("/api/reconciliation", json={"facility_id": facility.id, "confirm": True})

    assert response.status_code == 400
    assert response.get_json()["error"] == "bad scope"
