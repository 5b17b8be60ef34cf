import unittest
from datetime import datetime, timezone

from helpers import ApiTestCase

from qanoonmate.exceptions import ValidationError
from qanoonmate.schemas.common import PaginationParams
from qanoonmate.services.listing import build_meta, contains_any, page_window, paginate_items, split_csv
from qanoonmate.utils.date_normalization import date_range_start


class PaginationMetaTests(unittest.TestCase):
    def test_single_page_has_no_page_window(self):
        meta = build_meta(6, PaginationParams(page=1, limit=10))
        self.assertEqual(meta.total_pages, 1)
        self.assertEqual(meta.pages, [])
        self.assertFalse(meta.has_next)
        self.assertFalse(meta.has_prev)

    def test_empty_result(self):
        meta = build_meta(0, PaginationParams(page=1, limit=10))
        self.assertEqual(meta.total_pages, 0)
        self.assertEqual(meta.pages, [])

    def test_page_window(self):
        self.assertEqual(page_window(1, 3), [1, 2, 3])
        self.assertEqual(page_window(2, 10), [1, 2, 3, 4, "...", 10])
        self.assertEqual(page_window(5, 10), [1, "...", 4, 5, 6, "...", 10])
        self.assertEqual(page_window(9, 10), [1, "...", 7, 8, 9, 10])

    def test_paginate_items_slices(self):
        items, meta = paginate_items(list(range(23)), PaginationParams(page=3, limit=10))
        self.assertEqual(items, [20, 21, 22])
        self.assertEqual(meta.total_pages, 3)
        self.assertTrue(meta.has_prev)
        self.assertFalse(meta.has_next)


class FilterHelperTests(unittest.TestCase):
    def test_split_csv(self):
        self.assertEqual(split_csv(" pending, confirmed ,,"), ["pending", "confirmed"])
        self.assertEqual(split_csv(None), [])

    def test_contains_any_ignores_case(self):
        self.assertTrue(contains_any(["Tenancy", "Property"], ["property"]))
        self.assertFalse(contains_any([], ["property"]))

    def test_date_range_start(self):
        now = datetime(2026, 5, 31, 15, 30, tzinfo=timezone.utc)
        self.assertEqual(date_range_start("today", now), datetime(2026, 5, 31, tzinfo=timezone.utc))
        self.assertEqual(date_range_start("month", now), datetime(2026, 4, 30, 15, 30, tzinfo=timezone.utc))
        self.assertEqual(date_range_start("3months", now), datetime(2026, 2, 28, 15, 30, tzinfo=timezone.utc))
        self.assertIsNone(date_range_start("all", now))
        self.assertIsNone(date_range_start(None, now))

    def test_unknown_date_range_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            date_range_start("fortnight")
        self.assertIn("3months", ctx.exception.details["allowed"])


class ListEndpointPaginationTests(ApiTestCase):
    def test_six_rows_with_limit_ten_render_no_pagination_control(self):
        admin_headers = self.create_admin()
        for index in range(6):
            self.register(f"lawyer{index}@example.com", "lawyer", jurisdiction="Islamabad High Court")

        response = self.client.get(
            "/api/lawyers/applications/pending", params={"limit": 10}, headers=admin_headers
        )
        meta = response.json()["meta"]
        self.assertEqual(len(response.json()["items"]), 6)
        self.assertEqual(meta["total_count"], 6)
        self.assertEqual(meta["total_pages"], 1)
        self.assertEqual(meta["pages"], [])

        response = self.client.get(
            "/api/lawyers/applications/pending", params={"limit": 4, "page": 2}, headers=admin_headers
        )
        meta = response.json()["meta"]
        self.assertEqual(len(response.json()["items"]), 2)
        self.assertEqual(meta["pages"], [1, 2])
        self.assertTrue(meta["has_prev"])

    def test_invalid_page_is_rejected(self):
        admin_headers = self.create_admin()
        response = self.client.get("/api/lawyers/applications/pending", params={"page": 0}, headers=admin_headers)
        self.assertEqual(response.status_code, 422)

    def test_unknown_date_range_returns_400(self):
        admin_headers = self.create_admin()
        response = self.client.get(
            "/api/lawyers/applications/pending", params={"date_range": "fortnight"}, headers=admin_headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("fortnight", response.json()["detail"])


if __name__ == "__main__":
    unittest.main()
