import unittest

from helpers import ApiTestCase


class FAQTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin_headers = self.create_admin()

    def _create(self, question, answer="See the relevant act.", **fields):
        payload = {"question": question, "answer": answer}
        payload.update(fields)
        response = self.client.post("/api/faqs", json=payload, headers=self.admin_headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def _verify(self, faq_id, approved=True):
        response = self.client.patch(
            f"/api/faqs/{faq_id}/verify", json={"approved": approved}, headers=self.admin_headers
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_new_faq_is_hidden_until_verified(self):
        faq = self._create("How do I register a property?", category="property")
        self.assertFalse(faq["is_approved"])

        public = self.client.get("/api/faqs/approved").json()
        self.assertEqual(public["items"], [])
        self.assertEqual(self.client.get(f"/api/faqs/{faq['id']}").status_code, 404)

        verified = self._verify(faq["id"])
        self.assertTrue(verified["is_approved"])
        self.assertIsNotNone(verified["verified_by"])
        self.assertIsNotNone(verified["verified_at"])

        public = self.client.get("/api/faqs/approved").json()
        self.assertEqual([item["id"] for item in public["items"]], [faq["id"]])
        self.assertEqual(self.client.get(f"/api/faqs/{faq['id']}").status_code, 200)

        withdrawn = self._verify(faq["id"], approved=False)
        self.assertIsNone(withdrawn["verified_by"])
        self.assertIsNone(withdrawn["verified_at"])

    def test_editing_content_withdraws_approval(self):
        faq = self._create("What is khula?", category="family")
        self._verify(faq["id"])

        response = self.client.put(f"/api/faqs/{faq['id']}", json={"category": "family-law"}, headers=self.admin_headers)
        self.assertTrue(response.json()["is_approved"])

        response = self.client.put(
            f"/api/faqs/{faq['id']}",
            json={"answer": "Khula is a divorce initiated by the wife."},
            headers=self.admin_headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertFalse(response.json()["is_approved"])
        self.assertIsNone(response.json()["verified_at"])

    def test_public_filters(self):
        rent = self._create("Can my landlord raise the rent?", category="property", tags=["Tenancy", "Rent"])
        bail = self._create("How does bail work?", category="criminal", tags=["Bail"])
        pending = self._create("Is this visible?", category="property", tags=["Tenancy"])
        self._verify(rent["id"])
        self._verify(bail["id"])

        by_category = self.client.get("/api/faqs/approved", params={"category": "property"}).json()
        self.assertEqual([item["id"] for item in by_category["items"]], [rent["id"]])

        by_tag = self.client.get("/api/faqs/approved", params={"tags": "bail,unknown"}).json()
        self.assertEqual([item["id"] for item in by_tag["items"]], [bail["id"]])
        self.assertEqual(by_tag["meta"]["total_count"], 1)

        by_search = self.client.get("/api/faqs/approved", params={"search": "LANDLORD"}).json()
        self.assertEqual([item["id"] for item in by_search["items"]], [rent["id"]])

        by_question = self.client.get("/api/faqs/approved", params={"sort": "question"}).json()
        self.assertEqual([item["id"] for item in by_question["items"]], [rent["id"], bail["id"]])

        response = self.client.get("/api/faqs/approved", params={"sort": "popular"})
        self.assertEqual(response.status_code, 400)

        admin_pending = self.client.get(
            "/api/faqs/all", params={"status": "pending"}, headers=self.admin_headers
        ).json()
        self.assertEqual([item["id"] for item in admin_pending["items"]], [pending["id"]])

    def test_admin_only_management(self):
        _, client_headers = self.create_client()
        response = self.client.post("/api/faqs", json={"question": "Q", "answer": "A"}, headers=client_headers)
        self.assertEqual(response.status_code, 403)
        response = self.client.get("/api/faqs/all", headers=client_headers)
        self.assertEqual(response.status_code, 403)

    def test_urdu_translation_and_delete(self):
        faq = self._create(
            "What is a power of attorney?",
            urdu_translation={"question": "مختار نامہ کیا ہے؟", "answer": "ایک قانونی دستاویز"},
            related_laws=["Powers of Attorney Act 1882"],
        )
        self.assertEqual(faq["urdu_translation"]["question"], "مختار نامہ کیا ہے؟")

        response = self.client.delete(f"/api/faqs/{faq['id']}", headers=self.admin_headers)
        self.assertEqual(response.status_code, 200)
        all_faqs = self.client.get("/api/faqs/all", headers=self.admin_headers).json()
        self.assertEqual(all_faqs["items"], [])


if __name__ == "__main__":
    unittest.main()
