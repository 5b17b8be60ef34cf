import unittest

from helpers import PASSWORD, ApiTestCase, future_iso

from qanoonmate.services.user_settings import deep_merge


class DeepMergeTests(unittest.TestCase):
    def test_nested_keys_are_merged(self):
        base = {"notifications": {"email": True, "sms": False}, "theme": "system"}
        merged = deep_merge(base, {"notifications": {"sms": True}})
        self.assertEqual(merged, {"notifications": {"email": True, "sms": True}, "theme": "system"})
        # the base is not mutated
        self.assertFalse(base["notifications"]["sms"])


class SettingsSectionTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.client_user, self.client_headers = self.create_client()
        self.lawyer, self.lawyer_headers = self.create_lawyer()

    def test_sections_depend_on_role(self):
        client_sections = self.client.get("/api/settings", headers=self.client_headers).json()
        self.assertEqual(set(client_sections), {"preferences", "security", "billing"})

        lawyer_sections = self.client.get("/api/settings", headers=self.lawyer_headers).json()
        self.assertIn("consultation", lawyer_sections)
        self.assertIn("availability", lawyer_sections)

        response = self.client.get("/api/settings/consultation", headers=self.client_headers)
        self.assertEqual(response.status_code, 404)
        response = self.client.patch("/api/settings/consultation", json={"auto_approve": True}, headers=self.client_headers)
        self.assertEqual(response.status_code, 404)

    def test_partial_update_keeps_other_fields(self):
        response = self.client.patch(
            "/api/settings/preferences",
            json={"notifications": {"sms": True}, "theme": "dark"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertTrue(data["notifications"]["sms"])
        self.assertTrue(data["notifications"]["email"])
        self.assertEqual(data["theme"], "dark")
        self.assertEqual(data["language"], "en")

        stored = self.client.get("/api/settings/preferences", headers=self.client_headers).json()["data"]
        self.assertEqual(stored, data)

    def test_unknown_and_invalid_fields_are_rejected(self):
        response = self.client.patch("/api/settings/preferences", json={"colour": "red"}, headers=self.client_headers)
        self.assertEqual(response.status_code, 422)

        response = self.client.patch(
            "/api/settings/availability",
            json={"weekly": {"monday": [{"start": "17:00", "end": "09:00"}]}},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 422)

        response = self.client.patch(
            "/api/settings/consultation",
            json={"fees": {"video": -5}},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 422)

    def test_consultation_settings_drive_booking(self):
        response = self.client.patch(
            "/api/settings/consultation",
            json={"modes": ["phone"], "fees": {"phone": 2500}, "auto_approve": True},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        response = self.client.post(
            "/api/consultations/book",
            json={
                "lawyer_id": self.lawyer["id"],
                "mode": "video",
                "scheduled_date": future_iso(),
                "terms_accepted": True,
            },
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("video", response.json()["detail"])

        booked = self.book(self.client_headers, self.lawyer["id"], mode="phone")
        self.assertEqual(booked["status"], "scheduled")
        self.assertEqual(booked["fee"], 2500.0)
        self.assertIn("confirm", booked["available_actions"])

    def test_reset_section(self):
        self.client.patch("/api/settings/preferences", json={"theme": "dark"}, headers=self.client_headers)
        response = self.client.post("/api/settings/reset/preferences", headers=self.client_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["theme"], "system")

    def test_two_factor_toggle_returns_stored_state(self):
        response = self.client.patch(
            "/api/settings/security/two-factor", json={"enabled": True}, headers=self.client_headers
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json(), {"two_factor_enabled": True})

        security = self.client.get("/api/settings/security", headers=self.client_headers).json()["data"]
        self.assertTrue(security["two_factor_enabled"])
        self.assertEqual(security["activity_logs"][0]["action"], "two_factor_enabled")

        response = self.client.patch(
            "/api/settings/security/two-factor", json={"enabled": False}, headers=self.client_headers
        )
        self.assertEqual(response.json(), {"two_factor_enabled": False})

        response = self.client.patch(
            "/api/settings/security/two-factor", json={"enabled": "maybe"}, headers=self.client_headers
        )
        self.assertEqual(response.status_code, 422)

    def test_identity_verification_submission_is_pending(self):
        response = self.client.patch(
            "/api/settings/identity_verification",
            json={"documents": {"cnic_front": "/api/lawyers/applications/app-1/documents/doc-1"}},
            headers=self.lawyer_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["data"]["status"], "pending")

    def test_deactivate_requires_password(self):
        response = self.client.post(
            "/api/settings/danger-zone/deactivate",
            json={"password": "wrong-password", "reason": "Leaving"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/settings/danger-zone/deactivate",
            json={"password": PASSWORD, "reason": "Leaving"},
            headers=self.client_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        response = self.client.post(
            "/api/auth/login", json={"email": self.client_user["email"], "password": PASSWORD}
        )
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
