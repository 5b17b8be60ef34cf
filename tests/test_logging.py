import json
import logging
import unittest

from qanoonmate.utils.structured_logging import ContextTextFormatter, StructuredFormatter, redact


def _record(message, context=None, exc_info=None):
    record = logging.LogRecord("qanoonmate.payments", logging.INFO, __file__, 1, message, (), exc_info)
    if context is not None:
        record.context = context
    return record


class RedactTests(unittest.TestCase):
    def test_sensitive_keys_are_masked(self):
        self.assertEqual(
            redact({"order_id": "QM-1", "Signature": "abc", "password": "x"}),
            {"order_id": "QM-1", "Signature": "***", "password": "***"},
        )


class FormatterTests(unittest.TestCase):
    def test_json_output(self):
        line = StructuredFormatter().format(_record("Payment completed", {"order_id": "QM-1", "token": "t"}))
        data = json.loads(line)
        self.assertEqual(data["level"], "INFO")
        self.assertEqual(data["logger"], "qanoonmate.payments")
        self.assertEqual(data["message"], "Payment completed")
        self.assertEqual(data["context"], {"order_id": "QM-1", "token": "***"})
        self.assertNotIn("extra", data)

    def test_text_output_appends_context(self):
        formatter = ContextTextFormatter("%(levelname)s %(message)s")
        self.assertEqual(formatter.format(_record("Booked", {"consultation_id": "c1"})), "INFO Booked | consultation_id=c1")
        self.assertEqual(formatter.format(_record("Plain")), "INFO Plain")


if __name__ == "__main__":
    unittest.main()
