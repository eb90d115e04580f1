"""
HTTP surface: response envelope, error codes and role capabilities.
"""

from datetime import time

from conftest import MONDAY


def book_payload(seed, start="10:00", patient=None, therapist=None):
    return {
        "patient_id": (patient or seed.patient).id,
        "therapist_id": (therapist or seed.therapist).id,
        "therapy_type_id": seed.therapy_type.id,
        "scheduled_date": MONDAY.isoformat(),
        "start_time": start,
    }


class TestEnvelope:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_create_session_success(self, client, seed, auth_headers):
        res = client.post("/sessions", json=book_payload(seed), headers=auth_headers(seed.operator))

        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["error"] is None
        assert body["data"]["end_time"] == "11:00:00"
        assert body["data"]["status"] == "SCHEDULED"

    def test_conflict_is_409_with_code(self, client, seed, auth_headers):
        headers = auth_headers(seed.operator)
        first = client.post("/sessions", json=book_payload(seed), headers=headers).json()["data"]

        res = client.post(
            "/sessions",
            json=book_payload(seed, start="10:30", patient=seed.second_patient),
            headers=headers,
        )

        assert res.status_code == 409
        body = res.json()
        assert body["success"] is False
        assert body["data"] is None
        assert body["error"]["code"] == "THERAPIST_SCHEDULING_CONFLICT"
        assert body["error"]["details"]["conflicting_session_id"] == first["id"]

    def test_not_found_is_404(self, client, seed, auth_headers):
        res = client.get("/sessions/9999", headers=auth_headers(seed.admin))

        assert res.status_code == 404
        assert res.json()["error"]["code"] == "SESSION_NOT_FOUND"

    def test_request_validation_is_400(self, client, seed, auth_headers):
        payload = book_payload(seed)
        payload["end_time"] = "09:00"

        res = client.post("/sessions", json=payload, headers=auth_headers(seed.operator))

        assert res.status_code == 400
        assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_zero_cost_is_400(self, client, seed, auth_headers):
        payload = book_payload(seed)
        payload["cost"] = "0.00"

        res = client.post("/sessions", json=payload, headers=auth_headers(seed.operator))

        assert res.status_code == 400
        assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_missing_token_is_401(self, client, seed):
        res = client.get("/sessions")

        assert res.status_code == 401
        assert res.json()["success"] is False

    def test_garbage_token_is_401(self, client, seed):
        res = client.get("/sessions", headers={"Authorization": "Bearer not-a-jwt"})

        assert res.status_code == 401
        assert res.json()["error"]["code"] == "UNAUTHORIZED"

    def test_list_is_paginated(self, client, seed, auth_headers):
        headers = auth_headers(seed.operator)
        for start in ("09:00", "10:00", "11:00"):
            client.post("/sessions", json=book_payload(seed, start=start), headers=headers)

        data = client.get("/sessions?limit=2", headers=headers).json()["data"]

        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert len(data["items"]) == 2


class TestCapabilities:
    def test_therapist_cannot_book(self, client, seed, auth_headers):
        res = client.post("/sessions", json=book_payload(seed), headers=auth_headers(seed.therapist))

        assert res.status_code == 403
        assert res.json()["error"]["code"] == "FORBIDDEN"

    def test_accountant_cannot_cancel(self, client, seed, auth_headers):
        session = client.post(
            "/sessions", json=book_payload(seed), headers=auth_headers(seed.operator)
        ).json()["data"]

        res = client.patch(
            f"/sessions/{session['id']}/cancel",
            json={"cancel_reason": "Accountant tried"},
            headers=auth_headers(seed.accountant),
        )

        assert res.status_code == 403

    def test_operator_cannot_set_pricing(self, client, seed, auth_headers):
        res = client.post(
            f"/therapists/{seed.therapist.id}/pricing",
            json={"therapy_type_id": seed.therapy_type.id, "session_duration": 45, "session_cost": "45.00"},
            headers=auth_headers(seed.operator),
        )

        assert res.status_code == 403

    def test_therapist_manages_only_own_availability(self, client, seed, auth_headers):
        window = {"therapy_type_id": seed.therapy_type.id, "day_of_week": "TUESDAY",
                  "start_time": "09:00", "end_time": "12:00"}

        own = client.post(
            f"/therapists/{seed.therapist.id}/availability", json=window, headers=auth_headers(seed.therapist)
        )
        other = client.post(
            f"/therapists/{seed.other_therapist.id}/availability", json=window, headers=auth_headers(seed.therapist)
        )

        assert own.status_code == 201
        assert other.status_code == 403

    def test_other_tenant_token_sees_nothing(self, client, seed, auth_headers):
        session = client.post(
            "/sessions", json=book_payload(seed), headers=auth_headers(seed.operator)
        ).json()["data"]

        res = client.get(f"/sessions/{session['id']}", headers=auth_headers(seed.outsider))

        assert res.status_code == 404


class TestTherapistEndpoints:
    def test_slots(self, client, seed, auth_headers):
        headers = auth_headers(seed.operator)
        client.post("/sessions", json=book_payload(seed), headers=headers)

        res = client.get(
            f"/therapists/{seed.therapist.id}/slots",
            params={"therapy_type_id": seed.therapy_type.id, "date": MONDAY.isoformat()},
            headers=headers,
        )

        data = res.json()["data"]
        assert res.status_code == 200
        assert data["session_duration"] == 60
        assert len(data["slots"]) == 8
        taken = [s for s in data["slots"] if not s["is_available"]]
        assert [s["start_time"] for s in taken] == [time(10, 0).isoformat()]

    def test_pricing_override_and_resolve(self, client, seed, auth_headers):
        headers = auth_headers(seed.admin)
        url = f"/therapists/{seed.therapist.id}/pricing"
        body = {"therapy_type_id": seed.therapy_type.id, "session_duration": 45, "session_cost": "45.00"}

        assert client.post(url, json=body, headers=headers).status_code == 201
        duplicate = client.post(url, json=body, headers=headers)
        quote = client.get(
            f"{url}/resolve", params={"therapy_type_id": seed.therapy_type.id}, headers=headers
        ).json()["data"]

        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "PRICING_ALREADY_EXISTS"
        assert quote["is_custom_pricing"] is True
        assert quote["duration"] == 45

    def test_overlapping_window_is_409(self, client, seed, auth_headers):
        res = client.post(
            f"/therapists/{seed.therapist.id}/availability",
            json={"therapy_type_id": seed.therapy_type.id, "day_of_week": "MONDAY",
                  "start_time": "16:00", "end_time": "18:00"},
            headers=auth_headers(seed.admin),
        )

        assert res.status_code == 409
        assert res.json()["error"]["code"] == "AVAILABILITY_OVERLAP"


class TestBillingEndpoints:
    def test_invoice_and_pay(self, client, seed, auth_headers):
        ops = auth_headers(seed.operator)
        acc = auth_headers(seed.accountant)
        session = client.post("/sessions", json=book_payload(seed), headers=ops).json()["data"]

        created = client.post(
            "/invoices", json={"patient_id": seed.patient.id, "session_ids": [session["id"]]}, headers=acc
        )
        invoice = created.json()["data"]
        paid = client.post(
            f"/invoices/{invoice['id']}/payments",
            json={"paid_amount": "40.00", "method": "CARD", "idempotency_key": "k-1"},
            headers=acc,
        ).json()["data"]
        balance = client.get(f"/patients/{seed.patient.id}/balance", headers=acc).json()["data"]

        assert created.status_code == 201
        assert invoice["invoice_number"].startswith("INV-")
        assert len(invoice["line_items"]) == 1
        assert paid["payment_status"] == "PAID"
        assert balance["uninvoiced_count"] == 0
        assert balance["net_payable"] == "0.00"

    def test_insufficient_credit_is_400(self, client, seed, auth_headers):
        ops = auth_headers(seed.operator)
        acc = auth_headers(seed.accountant)
        session = client.post("/sessions", json=book_payload(seed), headers=ops).json()["data"]
        invoice = client.post(
            "/invoices", json={"patient_id": seed.patient.id, "session_ids": [session["id"]]}, headers=acc
        ).json()["data"]

        res = client.post(
            f"/invoices/{invoice['id']}/payments", json={"use_credit_amount": "10.00"}, headers=acc
        )

        assert res.status_code == 400
        assert res.json()["error"]["code"] == "INSUFFICIENT_CREDIT"

    def test_credit_purchase(self, client, seed, auth_headers):
        acc = auth_headers(seed.accountant)

        res = client.post(
            f"/patients/{seed.patient.id}/payments",
            json={"amount": "50.00", "method": "PREPAID_CREDIT"},
            headers=acc,
        )
        patient = client.get(f"/patients/{seed.patient.id}", headers=acc).json()["data"]

        assert res.status_code == 201
        assert patient["credit_balance"] == "50.00"

    def test_operator_cannot_confirm_payment(self, client, seed, auth_headers):
        res = client.post(
            "/invoices/1/payments", json={"paid_amount": "10.00"}, headers=auth_headers(seed.operator)
        )

        assert res.status_code == 403


class TestUnavailabilityEndpoints:
    def test_leave_blocks_slots_and_booking(self, client, seed, auth_headers):
        url = f"/therapists/{seed.therapist.id}/unavailability"
        period = {"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat(), "reason": "VACATION"}

        created = client.post(url, json=period, headers=auth_headers(seed.therapist))
        slots = client.get(
            f"/therapists/{seed.therapist.id}/slots",
            params={"therapy_type_id": seed.therapy_type.id, "date": MONDAY.isoformat()},
            headers=auth_headers(seed.operator),
        ).json()["data"]["slots"]
        booking = client.post("/sessions", json=book_payload(seed), headers=auth_headers(seed.operator))
        listed = client.get(url, headers=auth_headers(seed.operator)).json()["data"]

        assert created.status_code == 201
        assert created.json()["data"]["reason"] == "VACATION"
        assert not any(s["is_available"] for s in slots)
        assert booking.status_code == 400
        assert booking.json()["error"]["code"] == "THERAPIST_NOT_AVAILABLE"
        assert [p["id"] for p in listed] == [created.json()["data"]["id"]]

    def test_booked_sessions_block_leave(self, client, seed, auth_headers):
        ops = auth_headers(seed.operator)
        session = client.post("/sessions", json=book_payload(seed), headers=ops).json()["data"]
        url = f"/therapists/{seed.therapist.id}/unavailability"
        period = {"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat(), "reason": "SICK_LEAVE"}

        affected = client.get(
            f"{url}/affected-sessions",
            params={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat()},
            headers=ops,
        ).json()["data"]
        refused = client.post(url, json=period, headers=auth_headers(seed.admin))

        assert [s["id"] for s in affected] == [session["id"]]
        assert refused.status_code == 409
        assert refused.json()["error"]["code"] == "UNAVAILABILITY_AFFECTS_SESSIONS"
        assert refused.json()["error"]["details"]["session_ids"] == [session["id"]]

    def test_therapist_cannot_file_leave_for_colleague(self, client, seed, auth_headers):
        res = client.post(
            f"/therapists/{seed.other_therapist.id}/unavailability",
            json={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat(), "reason": "OTHER"},
            headers=auth_headers(seed.therapist),
        )

        assert res.status_code == 403

    def test_reschedule_slots(self, client, seed, auth_headers):
        ops = auth_headers(seed.operator)
        client.post("/sessions", json=book_payload(seed, start="09:00"), headers=ops)

        res = client.get(
            f"/therapists/{seed.therapist.id}/reschedule-slots",
            params={"therapy_type_id": seed.therapy_type.id, "start_date": MONDAY.isoformat(), "days_ahead": 1},
            headers=ops,
        )

        data = res.json()["data"]
        assert res.status_code == 200
        assert len(data) == 7
        assert data[0] == {"date": MONDAY.isoformat(), "start_time": "10:00:00", "end_time": "11:00:00"}
