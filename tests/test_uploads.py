import os
import unittest

from helpers import ApiTestCase

from qanoonmate.config import settings
from qanoonmate.exceptions import UploadRejectedError
from qanoonmate.services.uploads import DOCUMENT_TYPES, PHOTO_TYPES, validate_upload

MB = 1024 * 1024


class ValidateUploadTests(unittest.TestCase):
    def test_accepts_allowed_type(self):
        self.assertEqual(validate_upload("deed.pdf", "application/pdf", 1000, DOCUMENT_TYPES), "application/pdf")

    def test_resolves_generic_content_type_from_extension(self):
        self.assertEqual(validate_upload("photo.JPG", "application/octet-stream", 10, PHOTO_TYPES), "image/jpeg")

    def test_rejects_oversized_file(self):
        with self.assertRaises(UploadRejectedError) as ctx:
            validate_upload("scan.pdf", "application/pdf", 5 * MB + 1, DOCUMENT_TYPES)
        self.assertEqual(ctx.exception.message, 'File "scan.pdf" exceeds 5MB limit.')

    def test_rejects_unsupported_type(self):
        with self.assertRaises(UploadRejectedError) as ctx:
            validate_upload("notes.pdf", "application/pdf", 100, PHOTO_TYPES)
        self.assertEqual(ctx.exception.message, 'File "notes.pdf" has an unsupported type.')


class UploadEndpointTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.client_user, self.headers = self.create_client()

    def test_profile_photo_is_stored(self):
        response = self.client.post(
            "/api/profile/photo",
            files={"file": ("me.png", b"\x89PNG image", "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        url = response.json()["user"]["profile_photo"]
        self.assertTrue(url.startswith("/uploads/profile_photos/"))
        self.assertTrue(os.path.exists(os.path.join(settings.UPLOAD_DIR, url[len("/uploads/"):])))

        served = self.client.get(url)
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.content, b"\x89PNG image")

    def test_oversized_photo_is_rejected_before_saving(self):
        photo_dir = os.path.join(settings.UPLOAD_DIR, "profile_photos")
        before = set(os.listdir(photo_dir)) if os.path.isdir(photo_dir) else set()

        response = self.client.post(
            "/api/profile/photo",
            files={"file": ("big.png", b"0" * (5 * MB + 1), "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], 'File "big.png" exceeds 5MB limit.')

        after = set(os.listdir(photo_dir)) if os.path.isdir(photo_dir) else set()
        self.assertEqual(before, after)
        profile = self.client.get("/api/profile", headers=self.headers).json()
        self.assertIsNone(profile["user"]["profile_photo"])

    def test_pdf_is_not_a_profile_photo(self):
        response = self.client.post(
            "/api/profile/photo",
            files={"file": ("cv.pdf", b"%PDF-1.4", "application/pdf")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], 'File "cv.pdf" has an unsupported type.')

    def test_consultation_document_upload(self):
        lawyer, lawyer_headers = self.create_lawyer()
        cid = self.book(self.headers, lawyer["id"])["id"]

        response = self.client.post(
            f"/api/consultations/{cid}/documents",
            files={"file": ("agreement.pdf", b"%PDF-1.4 test", "application/pdf")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        document = response.json()["documents"][0]
        self.assertEqual(document["name"], "agreement.pdf")
        self.assertEqual(document["uploaded_by"], self.client_user["id"])


class ProfileUpdateTests(ApiTestCase):
    def test_client_cannot_set_lawyer_fields(self):
        _, headers = self.create_client()
        response = self.client.put("/api/profile", json={"city": "Lahore"}, headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["user"]["city"], "Lahore")

        response = self.client.put("/api/profile", json={"hourly_rate": 5000}, headers=headers)
        self.assertEqual(response.status_code, 400)

    def test_lawyer_updates_professional_fields(self):
        _, headers = self.create_lawyer()
        response = self.client.put(
            "/api/profile",
            json={"title": "Advocate High Court", "specializations": ["Tax Law"], "bio": "Tax practice"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()
        self.assertEqual(data["lawyer_profile"]["title"], "Advocate High Court")
        self.assertEqual(data["lawyer_profile"]["specializations"], ["Tax Law"])
        self.assertEqual(data["user"]["bio"], "Tax practice")


if __name__ == "__main__":
    unittest.main()
