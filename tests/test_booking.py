import unittest
from datetime import datetime, timedelta, timezone

from helpers import PASSWORD, ApiTestCase, future_iso

from qanoonmate.services.user_settings import WEEK_DAYS


class AuthTests(ApiTestCase):
    def test_register_and_login(self):
        user = self.register("Sana@Example.com", first_name="Sana", last_name="Malik")
        self.assertEqual(user["email"], "sana@example.com")
        self.assertEqual(user["full_name"], "Sana Malik")
        self.assertEqual(user["role"], "client")

        headers = self.login("sana@example.com")
        me = self.client.get("/api/auth/me", headers=headers).json()
        self.assertEqual(me["id"], user["id"])

    def test_duplicate_email(self):
        self.register("sana@example.com")
        response = self.client.post(
            "/api/auth/register",
            json={"email": "SANA@example.com", "password": PASSWORD, "first_name": "Other"},
        )
        self.assertEqual(response.status_code, 409)

    def test_wrong_password_and_missing_token(self):
        self.register("sana@example.com")
        response = self.client.post("/api/auth/login", json={"email": "sana@example.com", "password": "nope-nope"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        bad = {"Authorization": "Bearer not-a-token"}
        self.assertEqual(self.client.get("/api/auth/me", headers=bad).status_code, 401)

    def test_change_password(self):
        _, headers = self.create_client("sana@example.com")
        response = self.client.put(
            "/api/auth/password",
            json={"current_password": "wrong-pass-1", "new_password": "another-pass-2"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.put(
            "/api/auth/password",
            json={"current_password": PASSWORD, "new_password": "another-pass-2"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        self.login("sana@example.com", "another-pass-2")


class BookingTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.lawyer, self.lawyer_headers = self.create_lawyer()
        self.client_user, self.client_headers = self.create_client()

    def _post(self, headers=None, **fields):
        payload = {
            "lawyer_id": self.lawyer["id"],
            "title": "Rent agreement",
            "mode": "video",
            "scheduled_date": future_iso(),
            "duration": 60,
            "terms_accepted": True,
        }
        payload.update(fields)
        return self.client.post("/api/consultations/book", json=payload, headers=headers or self.client_headers)

    def test_booking_starts_pending(self):
        consultation = self.book(self.client_headers, self.lawyer["id"])
        self.assertEqual(consultation["status"], "pending")
        self.assertEqual(consultation["payment_status"], "pending")
        self.assertEqual(consultation["fee"], 6000.0)

        # 90 minutes at the hourly rate
        longer = self.book(self.client_headers, self.lawyer["id"], duration=90, scheduled_date=future_iso(days=4))
        self.assertEqual(longer["fee"], 9000.0)

    def test_idempotent_replay(self):
        headers = {**self.client_headers, "Idempotency-Key": "book-123"}
        scheduled = future_iso()
        first = self._post(headers=headers, scheduled_date=scheduled)
        second = self._post(headers=headers, scheduled_date=scheduled)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.json()["id"], second.json()["id"])

        mine = self.client.get("/api/consultations/my", headers=self.client_headers).json()
        self.assertEqual(mine["meta"]["total_count"], 1)

        # keys are per client
        _, other_headers = self.create_client("other@example.com")
        other = self._post(headers={**other_headers, "Idempotency-Key": "book-123"}, scheduled_date=future_iso(days=6))
        self.assertEqual(other.status_code, 201)
        self.assertNotEqual(other.json()["id"], first.json()["id"])

    def test_booking_rules(self):
        response = self._post(terms_accepted=False)
        self.assertEqual(response.status_code, 400)

        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        response = self._post(scheduled_date=past)
        self.assertEqual(response.status_code, 400)

        response = self._post(scheduled_date=future_iso(days=365))
        self.assertEqual(response.status_code, 400)

        response = self._post(duration=45)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["details"]["allowed"], [30, 60, 90])

        response = self._post(mode="carrier-pigeon")
        self.assertEqual(response.status_code, 422)

    def test_only_approved_lawyers_can_be_booked(self):
        pending, _ = self.create_lawyer("pending@example.com", approved=False)
        response = self._post(lawyer_id=pending["id"])
        self.assertEqual(response.status_code, 400)

        response = self._post(lawyer_id="missing")
        self.assertEqual(response.status_code, 404)

    def test_lawyers_cannot_book(self):
        response = self._post(headers=self.lawyer_headers)
        self.assertEqual(response.status_code, 403)


def _slot(days, hour, minute=0):
    day = (datetime.now(timezone.utc) + timedelta(days=days)).date()
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


class SlotConflictTests(ApiTestCase):
    """Lawyer availability and overlapping consultations"""

    def setUp(self):
        super().setUp()
        self.lawyer, self.lawyer_headers = self.create_lawyer()
        self.client_user, self.client_headers = self.create_client()
        self.other_client, self.other_headers = self.create_client("other@example.com")

    def _post(self, headers, scheduled, duration=60, lawyer_id=None):
        payload = {
            "lawyer_id": lawyer_id or self.lawyer["id"],
            "title": "Tenancy notice",
            "mode": "video",
            "scheduled_date": scheduled.isoformat(),
            "duration": duration,
            "terms_accepted": True,
        }
        return self.client.post("/api/consultations/book", json=payload, headers=headers)

    def test_lawyer_slot_cannot_be_double_booked(self):
        self.assertEqual(self._post(self.client_headers, _slot(3, 7)).status_code, 201)

        response = self._post(self.other_headers, _slot(3, 7, 30))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["conflict"], "double_booking")
        self.assertNotIn("consultation_id", response.json()["details"])

        # 08:00 end plus the default 15 minute buffer
        response = self._post(self.other_headers, _slot(3, 8, 10))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["buffer_minutes"], 15)

        self.assertEqual(self._post(self.other_headers, _slot(3, 8, 15)).status_code, 201)

    def test_client_cannot_overlap_own_consultations(self):
        first = self._post(self.client_headers, _slot(3, 7)).json()
        second_lawyer, _ = self.create_lawyer("second@example.com")

        response = self._post(self.client_headers, _slot(3, 7, 30), lawyer_id=second_lawyer["id"])
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["conflict"], "overlapping_slot")
        self.assertEqual(response.json()["details"]["consultation_id"], first["id"])

    def test_cancelled_slot_can_be_booked_again(self):
        first = self._post(self.client_headers, _slot(3, 7)).json()
        response = self.client.post(
            f"/api/consultations/{first['id']}/cancel",
            json={"reason": "lawyer_unavailable"},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        self.assertEqual(self._post(self.other_headers, _slot(3, 7)).status_code, 201)

    def test_unavailable_dates_are_refused(self):
        # 07:00 UTC is 12:00 in the lawyer's Asia/Karachi timezone, same calendar day
        blocked = _slot(4, 7)
        response = self.client.patch(
            "/api/settings/availability",
            json={"unavailable_dates": [blocked.date().isoformat()]},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        response = self._post(self.client_headers, blocked)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["conflict"], "lawyer_unavailable")
        self.assertEqual(response.json()["details"]["date"], blocked.date().isoformat())

        self.assertEqual(self._post(self.client_headers, _slot(5, 7)).status_code, 201)

    def test_weekly_hours_are_enforced(self):
        start = _slot(4, 7)
        response = self.client.patch(
            "/api/settings/availability",
            json={"weekly": {WEEK_DAYS[start.weekday()]: [{"start": "09:00", "end": "13:00"}]}},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        # 12:00-13:00 local fits, 13:30 local does not
        self.assertEqual(self._post(self.client_headers, start).status_code, 201)
        response = self._post(self.other_headers, _slot(4, 8, 30), duration=30)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["details"]["conflict"], "lawyer_unavailable")

        # no hours on the following day
        response = self._post(self.other_headers, _slot(5, 7))
        self.assertEqual(response.status_code, 409)


class ClientDirectoryTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.lawyer, self.lawyer_headers = self.create_lawyer()
        self.client_user, self.client_headers = self.create_client(first_name="Ayesha", city="Karachi")
        self.other, _ = self.create_client("other@example.com", first_name="Usman")
        self.book(self.client_headers, self.lawyer["id"])
        self.book(self.client_headers, self.lawyer["id"], scheduled_date=future_iso(days=5))

    def test_lawyer_sees_own_clients(self):
        page = self.client.get("/api/clients/mine", headers=self.lawyer_headers).json()
        self.assertEqual([c["id"] for c in page["items"]], [self.client_user["id"]])
        self.assertEqual(page["items"][0]["consultation_count"], 2)
        self.assertIsNotNone(page["items"][0]["last_consultation_date"])

        response = self.client.get(f"/api/clients/{self.other['id']}", headers=self.lawyer_headers)
        self.assertEqual(response.status_code, 404)

        response = self.client.get("/api/clients/mine", headers=self.client_headers)
        self.assertEqual(response.status_code, 403)

    def test_admin_lists_and_deactivates(self):
        admin_headers = self.create_admin()
        page = self.client.get("/api/clients", params={"search": "ayesha"}, headers=admin_headers).json()
        self.assertEqual([c["id"] for c in page["items"]], [self.client_user["id"]])

        response = self.client.patch(
            f"/api/clients/{self.other['id']}/status",
            json={"is_active": False, "reason": "spam"},
            headers=admin_headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])

        page = self.client.get("/api/clients", params={"status": "inactive"}, headers=admin_headers).json()
        self.assertEqual([c["id"] for c in page["items"]], [self.other["id"]])

        response = self.client.post("/api/auth/login", json={"email": "other@example.com", "password": PASSWORD})
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
