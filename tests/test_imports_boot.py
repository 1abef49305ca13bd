from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("bookmarket")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_orders_segment(self):
        module = importlib.import_module("bookmarket.segments.segment_orders_api")
        self.assertIsNotNone(getattr(module, "orders_bp", None))

    def test_import_order_tasks(self):
        module = importlib.import_module("bookmarket.tasks.order_tasks")
        self.assertTrue(hasattr(module, "run_commit_expiry_task"))
        self.assertTrue(hasattr(module, "run_commit_reminders_task"))
        self.assertTrue(hasattr(module, "run_tracking_sync_task"))


if __name__ == "__main__":
    unittest.main()
