import os
import unittest

from helpers import ApiTestCase

from qanoonmate.config import settings


class LawyerApplicationReviewTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin_headers = self.create_admin()

    def _apply(self, email, first_name, jurisdiction, **fields):
        return self.register(
            email, "lawyer",
            first_name=first_name,
            jurisdiction=jurisdiction,
            bar_council="Punjab Bar Council",
            **fields,
        )

    def _pending(self, **params):
        response = self.client.get("/api/lawyers/applications/pending", params=params, headers=self.admin_headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def _application_id(self, user_id):
        items = self._pending(limit=100)["items"]
        return next(item["id"] for item in items if item["user_id"] == user_id)

    def test_pending_filter_by_jurisdiction_and_name(self):
        self._apply("fariha@example.com", "Fariha", "Lahore High Court", last_name="Khan")
        self._apply("fariha.s@example.com", "Fariha", "Sindh High Court", last_name="Shah")
        self._apply("bilal@example.com", "Bilal", "Lahore High Court")

        data = self._pending(jurisdiction="Lahore High Court", search="Fariha")
        self.assertEqual([item["email"] for item in data["items"]], ["fariha@example.com"])
        self.assertEqual(data["items"][0]["name"], "Fariha Khan")
        self.assertEqual(data["meta"]["total_count"], 1)

        data = self._pending(jurisdiction="lahore high")
        self.assertEqual(data["meta"]["total_count"], 2)

    def test_pending_list_requires_admin(self):
        self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        _, lawyer_headers = self.create_lawyer("other@example.com")
        response = self.client.get("/api/lawyers/applications/pending", headers=lawyer_headers)
        self.assertEqual(response.status_code, 403)

    def test_approve_makes_lawyer_public(self):
        user = self._apply("fariha@example.com", "Fariha", "Lahore High Court", specializations=["Family Law"])
        app_id = self._application_id(user["id"])

        response = self.client.post(f"/api/lawyers/applications/{app_id}/approve", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "approved")
        self.assertIsNotNone(response.json()["approved_at"])

        self.assertEqual(self._pending()["meta"]["total_count"], 0)
        directory = self.client.get("/api/lawyers", params={"specialization": "family law"}).json()
        self.assertEqual([item["id"] for item in directory["items"]], [user["id"]])

    def test_reject_requires_known_reason_and_notes_for_other(self):
        user = self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        app_id = self._application_id(user["id"])

        response = self.client.post(
            f"/api/lawyers/applications/{app_id}/reject",
            json={"reason": "not-a-reason"},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 422)

        response = self.client.post(
            f"/api/lawyers/applications/{app_id}/reject",
            json={"reason": "other"},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            f"/api/lawyers/applications/{app_id}/reject",
            json={"reason": "invalid-documents", "notes": "CNIC is blurred"},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()
        self.assertEqual(data["status"], "rejected")
        self.assertEqual(data["rejection_reason"], "invalid-documents")
        self.assertIsNotNone(data["rejected_by"])

        # a rejected application cannot be approved directly
        response = self.client.post(f"/api/lawyers/applications/{app_id}/approve", headers=self.admin_headers)
        self.assertEqual(response.status_code, 409)

    def test_rejected_list_reconsider_and_delete(self):
        first = self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        second = self._apply("bilal@example.com", "Bilal", "Lahore High Court")
        first_id = self._application_id(first["id"])
        second_id = self._application_id(second["id"])
        self.client.post(f"/api/lawyers/applications/{first_id}/mark-duplicate", headers=self.admin_headers)
        self.client.post(
            f"/api/lawyers/applications/{second_id}/reject",
            json={"reason": "suspended-license"},
            headers=self.admin_headers,
        )

        rejected = self.client.get(
            "/api/lawyers/applications/rejected",
            params={"reason": "duplicate-application"},
            headers=self.admin_headers,
        ).json()
        self.assertEqual([item["id"] for item in rejected["items"]], [first_id])

        rejected = self.client.get(
            "/api/lawyers/applications/rejected", params={"sort": "name"}, headers=self.admin_headers
        ).json()
        self.assertEqual([item["name"] for item in rejected["items"]], ["Bilal", "Fariha"])

        response = self.client.post(f"/api/lawyers/applications/{first_id}/reconsider", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "pending")
        self.assertIsNone(response.json()["rejection_reason"])

        response = self.client.delete(f"/api/lawyers/applications/{second_id}", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200, response.text)

        rejected = self.client.get("/api/lawyers/applications/rejected", headers=self.admin_headers).json()
        self.assertEqual(rejected["items"], [])
        self.assertEqual(rejected["meta"]["total_count"], 0)
        response = self.client.get(f"/api/lawyers/applications/{second_id}", headers=self.admin_headers)
        self.assertEqual(response.status_code, 404)

        # pending applications cannot be deleted or reconsidered
        response = self.client.delete(f"/api/lawyers/applications/{first_id}", headers=self.admin_headers)
        self.assertEqual(response.status_code, 409)
        response = self.client.post(f"/api/lawyers/applications/{first_id}/reconsider", headers=self.admin_headers)
        self.assertEqual(response.status_code, 409)

    def test_request_info_moves_to_under_review(self):
        user = self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        app_id = self._application_id(user["id"])

        response = self.client.post(
            f"/api/lawyers/applications/{app_id}/request-info",
            json={"message": "Please upload the back of your bar card"},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "under_review")
        self.assertEqual(response.json()["admin_notes"][-1]["kind"], "info_request")
        # still listed as awaiting review
        self.assertEqual(self._pending()["meta"]["total_count"], 1)

    def test_lawyer_sees_own_application_and_uploads_documents(self):
        self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        headers = self.login("fariha@example.com")

        response = self.client.get("/api/lawyers/me/application", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "pending")

        response = self.client.post(
            "/api/lawyers/me/documents",
            data={"doc_type": "cnic_front"},
            files={"file": ("cnic.png", b"\x89PNG fake image bytes", "image/png")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["uploaded_docs"], ["cnic.png"])
        self.assertEqual(response.json()["documents"][0]["doc_type"], "cnic_front")

        response = self.client.post(
            "/api/lawyers/me/documents",
            data={"doc_type": "cnic_front"},
            files={"file": ("cnic.exe", b"MZ", "application/x-msdownload")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], 'File "cnic.exe" has an unsupported type.')

    def test_verification_documents_are_not_public(self):
        self._apply("fariha@example.com", "Fariha", "Lahore High Court")
        headers = self.login("fariha@example.com")
        response = self.client.post(
            "/api/lawyers/me/documents",
            data={"doc_type": "selfie"},
            files={"file": ("selfie.png", b"\x89PNG selfie", "image/png")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        document = response.json()["documents"][0]
        url = document["url"]
        self.assertTrue(url.startswith("/api/lawyers/applications/"))

        # nothing under the static mount
        public_dir = os.path.join(settings.UPLOAD_DIR, "verification")
        self.assertFalse(os.path.isdir(public_dir) and os.listdir(public_dir))
        self.assertEqual(self.client.get(f"/uploads/verification/{document['id']}.png").status_code, 404)

        self.assertEqual(self.client.get(url).status_code, 401)
        _, other_headers = self.create_client()
        self.assertEqual(self.client.get(url, headers=other_headers).status_code, 403)

        response = self.client.get(url, headers=self.admin_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"\x89PNG selfie")
        self.assertEqual(response.headers["content-type"], "image/png")

        self.assertEqual(self.client.get(url, headers=headers).status_code, 200)
        missing = url.rsplit("/", 1)[0] + "/unknown"
        self.assertEqual(self.client.get(missing, headers=self.admin_headers).status_code, 404)


if __name__ == "__main__":
    unittest.main()
