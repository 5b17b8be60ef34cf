import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from helpers import ApiTestCase, future_iso

from qanoonmate.exceptions import InvalidTransitionError, ValidationError
from qanoonmate.models import Consultation, User
from qanoonmate.services import consultation_lifecycle as lifecycle


class AvailableActionsTests(unittest.TestCase):
    def test_confirm_only_offered_for_pending_and_scheduled(self):
        for status in ("pending", "scheduled"):
            self.assertIn("confirm", lifecycle.available_actions(status), status)
        for status in ("confirmed", "in_progress", "completed", "cancelled", "no_show", "rescheduled"):
            self.assertNotIn("confirm", lifecycle.available_actions(status), status)

    def test_terminal_statuses_have_no_actions_except_rating(self):
        self.assertEqual(lifecycle.available_actions("completed"), ["rate"])
        self.assertEqual(lifecycle.available_actions("completed", has_rating=True), [])
        self.assertEqual(lifecycle.available_actions("cancelled"), [])
        self.assertEqual(lifecycle.available_actions("no_show"), [])

    def test_rescheduled_can_start_but_not_confirm(self):
        actions = lifecycle.available_actions("rescheduled")
        self.assertIn("start", actions)
        self.assertIn("cancel", actions)
        self.assertNotIn("confirm", actions)

    def test_disallowed_transition_raises(self):
        consultation = Consultation(id="c1", status="completed")
        with self.assertRaises(InvalidTransitionError) as ctx:
            lifecycle.ensure_transition(consultation, lifecycle.CONFIRM)
        self.assertEqual(ctx.exception.details["current_status"], "completed")


class CancelReasonTests(unittest.TestCase):
    def test_service_rejects_cancel_without_reason(self):
        admin = User(id="a1", role="admin")
        consultation = Consultation(
            id="c1", client_id="cl", lawyer_id="lw", status="confirmed",
            scheduled_date=datetime.now(timezone.utc) + timedelta(days=2),
        )
        with self.assertRaises(ValidationError):
            asyncio.run(lifecycle.cancel(None, consultation, admin, reason=None))
        self.assertEqual(consultation.status, "confirmed")
        self.assertIsNone(consultation.cancelled_at)

    def test_other_requires_a_note(self):
        admin = User(id="a1", role="admin")
        consultation = Consultation(id="c1", client_id="cl", lawyer_id="lw", status="pending")
        with self.assertRaises(ValidationError):
            asyncio.run(lifecycle.cancel(None, consultation, admin, reason="other", note="  "))


class ConsultationFlowTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.lawyer, self.lawyer_headers = self.create_lawyer()
        self.client_user, self.client_headers = self.create_client()

    def test_full_lifecycle_and_rating(self):
        booked = self.book(self.client_headers, self.lawyer["id"])
        self.assertEqual(booked["status"], "pending")
        self.assertEqual(booked["fee"], 6000.0)
        self.assertIn("confirm", booked["available_actions"])

        cid = booked["id"]
        # only the lawyer confirms
        response = self.client.post(f"/api/consultations/{cid}/confirm", headers=self.client_headers)
        self.assertEqual(response.status_code, 403)

        response = self.client.post(f"/api/consultations/{cid}/confirm", headers=self.lawyer_headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "confirmed")
        self.assertNotIn("confirm", response.json()["available_actions"])

        response = self.client.post(
            f"/api/consultations/{cid}/start",
            json={"meeting_link": "https://meet.example.com/abc"},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.json()["status"], "in_progress")
        self.assertEqual(response.json()["meeting_link"], "https://meet.example.com/abc")

        response = self.client.post(
            f"/api/consultations/{cid}/complete",
            json={"lawyer_notes": "Advised on filing"},
            headers=self.lawyer_headers,
        )
        data = response.json()
        self.assertEqual(data["status"], "completed")
        self.assertIsNotNone(data["completed_at"])
        self.assertEqual(data["available_actions"], ["rate"])

        response = self.client.post(
            f"/api/consultations/{cid}/rate",
            json={"rating": 4, "review": "Helpful", "categories": {"expertise": 5}},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["rating"]["rating"], 4)
        self.assertEqual(response.json()["available_actions"], [])

        profile = self.client.get(f"/api/lawyers/{self.lawyer['id']}").json()
        self.assertEqual(profile["average_rating"], 4.0)
        self.assertEqual(profile["review_count"], 1)

        history = [entry["to"] for entry in data["status_history"]]
        self.assertEqual(history, ["pending", "confirmed", "in_progress", "completed"])

    def test_completed_consultation_cannot_be_confirmed(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]
        self.client.post(f"/api/consultations/{cid}/confirm", headers=self.lawyer_headers)
        self.client.post(f"/api/consultations/{cid}/start", headers=self.lawyer_headers)
        self.client.post(f"/api/consultations/{cid}/complete", headers=self.lawyer_headers)

        response = self.client.post(f"/api/consultations/{cid}/confirm", headers=self.lawyer_headers)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["current_status"], "completed")

    def test_cancel_without_reason_is_rejected_and_status_unchanged(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]

        response = self.client.post(f"/api/consultations/{cid}/cancel", json={}, headers=self.client_headers)
        self.assertEqual(response.status_code, 422)

        current = self.client.get(f"/api/consultations/{cid}", headers=self.client_headers).json()
        self.assertEqual(current["status"], "pending")
        self.assertIsNone(current["cancelled_at"])

        response = self.client.post(
            f"/api/consultations/{cid}/cancel",
            json={"reason": "client_request"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "cancelled")
        self.assertEqual(response.json()["cancellation_reason"], "client_request")
        self.assertEqual(response.json()["cancelled_by"], self.client_user["id"])

    def test_client_cancel_respects_cutoff(self):
        response = self.client.patch(
            "/api/settings/consultation",
            json={"cancel_cutoff_hours": 48},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        cid = self.book(self.client_headers, self.lawyer["id"], scheduled_date=future_iso(days=1))["id"]

        response = self.client.post(
            f"/api/consultations/{cid}/cancel",
            json={"reason": "emergency"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 400)

        # the cutoff binds clients only
        response = self.client.post(
            f"/api/consultations/{cid}/cancel",
            json={"reason": "lawyer_unavailable"},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

    def test_reschedule_request_approved_by_other_party(self):
        booked = self.book(self.client_headers, self.lawyer["id"])
        cid = booked["id"]
        new_date = future_iso(days=5)

        response = self.client.post(
            f"/api/consultations/{cid}/reschedule",
            json={"new_date": new_date, "new_time_slot": "14:00-15:00", "reason": "Travelling"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        request = response.json()["reschedule_requests"][0]
        self.assertEqual(request["status"], "pending")
        self.assertEqual(response.json()["status"], "pending")

        # the requester cannot approve their own request
        response = self.client.post(
            f"/api/consultations/{cid}/reschedule/{request['id']}/approve", headers=self.client_headers
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.post(
            f"/api/consultations/{cid}/reschedule/{request['id']}/approve",
            json={"response_message": "Works for me"},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()
        self.assertEqual(data["status"], "rescheduled")
        self.assertEqual(data["time_slot"], "14:00-15:00")
        self.assertEqual(data["reschedule_requests"][0]["status"], "approved")
        self.assertIsNotNone(data["original_date"])
        self.assertNotIn("confirm", data["available_actions"])
        self.assertIn("start", data["available_actions"])

    def test_reschedule_respects_booking_window_and_other_slots(self):
        booked = self.book(self.client_headers, self.lawyer["id"])
        other = self.book(self.client_headers, self.lawyer["id"], scheduled_date=future_iso(days=6))
        url = f"/api/consultations/{booked['id']}/reschedule"

        response = self.client.post(url, json={"new_date": future_iso(days=90)}, headers=self.client_headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["details"]["max_days"], 60)

        response = self.client.post(url, json={"new_date": other["scheduled_date"]}, headers=self.client_headers)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["conflict"], "double_booking")

        # moving within its own slot is not a conflict
        response = self.client.post(
            url, json={"new_date": future_iso(days=3, hours=1)}, headers=self.client_headers
        )
        self.assertEqual(response.status_code, 200, response.text)

    def test_reschedule_approval_rechecks_the_slot(self):
        booked = self.book(self.client_headers, self.lawyer["id"])
        new_date = future_iso(days=5)
        response = self.client.post(
            f"/api/consultations/{booked['id']}/reschedule",
            json={"new_date": new_date},
            headers=self.client_headers,
        )
        request_id = response.json()["reschedule_requests"][0]["id"]

        # another client takes the slot before the lawyer answers
        _, other_headers = self.create_client("other@example.com")
        self.book(other_headers, self.lawyer["id"], scheduled_date=new_date)

        response = self.client.post(
            f"/api/consultations/{booked['id']}/reschedule/{request_id}/approve", headers=self.lawyer_headers
        )
        self.assertEqual(response.status_code, 409)
        current = self.client.get(f"/api/consultations/{booked['id']}", headers=self.client_headers).json()
        self.assertEqual(current["reschedule_requests"][0]["status"], "pending")
        self.assertEqual(current["status"], "pending")

    def test_cancel_closes_pending_reschedule_requests(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]
        self.client.post(
            f"/api/consultations/{cid}/reschedule",
            json={"new_date": future_iso(days=5)},
            headers=self.client_headers,
        )

        response = self.client.post(
            f"/api/consultations/{cid}/cancel",
            json={"reason": "lawyer_unavailable"},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        request = response.json()["reschedule_requests"][0]
        self.assertEqual(request["status"], "rejected")
        self.assertEqual(request["response_message"], "Consultation cancelled")
        self.assertIsNotNone(request["responded_at"])

    def test_private_notes_hidden_from_other_role(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]
        response = self.client.post(
            f"/api/consultations/{cid}/notes",
            json={"content": "Check the mutation record", "is_private": True},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(len(response.json()["notes"]), 1)

        client_view = self.client.get(f"/api/consultations/{cid}", headers=self.client_headers).json()
        self.assertEqual(client_view["notes"], [])

    def test_change_history_is_recorded(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]
        self.client.post(f"/api/consultations/{cid}/confirm", headers=self.lawyer_headers)

        response = self.client.get(f"/api/consultations/{cid}/history", headers=self.lawyer_headers)
        self.assertEqual(response.status_code, 200)
        status_changes = [(c["old_value"], c["new_value"]) for c in response.json() if c["field_name"] == "status"]
        self.assertIn(('"pending"', '"confirmed"'), status_changes)

    def test_outsider_cannot_view(self):
        cid = self.book(self.client_headers, self.lawyer["id"])["id"]
        _, other_headers = self.create_client("other@example.com")
        response = self.client.get(f"/api/consultations/{cid}", headers=other_headers)
        self.assertEqual(response.status_code, 403)


class ConsultationSocketTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.lawyer, _ = self.create_lawyer()
        _, self.client_headers = self.create_client()
        self.consultation = self.book(self.client_headers, self.lawyer["id"])
        self.token = self.client_headers["Authorization"].split(" ", 1)[1]

    def test_initial_state_and_ping(self):
        url = f"/ws/consultations/{self.consultation['id']}?token={self.token}"
        with self.client.websocket_connect(url) as ws:
            message = ws.receive_json()
            self.assertEqual(message["type"], "initial")
            self.assertEqual(message["data"]["id"], self.consultation["id"])
            self.assertEqual(message["data"]["status"], "pending")
            ws.send_text("ping")
            self.assertEqual(ws.receive_text(), "pong")

    def test_outsider_gets_error(self):
        _, other_headers = self.create_client("other@example.com")
        token = other_headers["Authorization"].split(" ", 1)[1]
        with self.client.websocket_connect(f"/ws/consultations/{self.consultation['id']}?token={token}") as ws:
            message = ws.receive_json()
        self.assertEqual(message["type"], "error")


if __name__ == "__main__":
    unittest.main()
