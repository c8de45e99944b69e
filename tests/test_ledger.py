"""
Ledger key/value contract, run against both stores.
"""

import os
import shutil
import tempfile
import threading
import unittest

from pdpaudit import InMemoryLedger, LedgerUnavailable, SqliteLedger
from pdpaudit.ledger import prefix_end


class LedgerContract:
    """Mixin: subclasses provide ``make_store``."""

    def setUp(self):
        self.store = self.make_store()

    def tearDown(self):
        self.store.close()

    def test_put_get(self):
        with self.store.transaction() as txn:
            txn.put("A", "1")
        with self.store.transaction() as txn:
            self.assertEqual(txn.get("A"), "1")
            self.assertIsNone(txn.get("B"))

    def test_read_your_writes(self):
        with self.store.transaction() as txn:
            txn.put("A", "1")
            self.assertEqual(txn.get("A"), "1")
            self.assertEqual(txn.range_scan("A", "B"), [("A", "1")])

    def test_range_scan_is_ordered_and_half_open(self):
        with self.store.transaction() as txn:
            for key in ("TAG_F1_000000000010", "TAG_F1_000000000002", "TAG_F2_000000000000", "AUDIT_F1_1"):
                txn.put(key, key)
        with self.store.transaction() as txn:
            keys = [k for k, _ in txn.range_scan("TAG_F1_", prefix_end("TAG_F1_"))]
        self.assertEqual(keys, ["TAG_F1_000000000002", "TAG_F1_000000000010"])

    def test_json_helpers(self):
        with self.store.transaction() as txn:
            txn.put_json("R_1", {"b": 2, "a": 1})
            txn.put_json("R_2", {"a": 3})
        with self.store.transaction() as txn:
            self.assertEqual(txn.get_json("R_1"), {"a": 1, "b": 2})
            self.assertEqual([k for k, _ in txn.scan_prefix("R_")], ["R_1", "R_2"])
            self.assertIsNone(txn.get_json("R_3"))

    def test_exception_discards_writes(self):
        with self.store.transaction() as txn:
            txn.put("keep", "1")
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as txn:
                txn.put("keep", "2")
                txn.put("drop", "x")
                raise RuntimeError("abort")
        with self.store.transaction() as txn:
            self.assertEqual(txn.get("keep"), "1")
            self.assertIsNone(txn.get("drop"))

    def test_closed_store_is_unavailable(self):
        self.store.close()
        with self.assertRaises(LedgerUnavailable):
            with self.store.transaction():
                pass

    def test_concurrent_increments_are_serialised(self):
        def bump():
            for _ in range(20):
                with self.store.transaction() as txn:
                    txn.put("counter", str(int(txn.get("counter") or 0) + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        with self.store.transaction() as txn:
            self.assertEqual(txn.get("counter"), "80")


class TestInMemoryLedger(LedgerContract, unittest.TestCase):

    def make_store(self):
        return InMemoryLedger()

    def test_len_counts_committed_keys(self):
        with self.store.transaction() as txn:
            txn.put("A", "1")
            self.assertEqual(len(self.store), 0)
        self.assertEqual(len(self.store), 1)


class TestSqliteLedger(LedgerContract, unittest.TestCase):

    def make_store(self):
        self.tmp = tempfile.mkdtemp()
        return SqliteLedger(os.path.join(self.tmp, "ledger", "ledger.db"))

    def tearDown(self):
        super().tearDown()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_persists_across_instances(self):
        path = os.path.join(self.tmp, "ledger", "ledger.db")
        with self.store.transaction() as txn:
            txn.put("A", "1")
        self.store.close()
        reopened = SqliteLedger(path)
        try:
            with reopened.transaction() as txn:
                self.assertEqual(txn.get("A"), "1")
        finally:
            reopened.close()

    def test_unopenable_database_is_unavailable(self):
        # A directory cannot be opened as a database file.
        store = SqliteLedger(self.tmp)
        with self.assertRaises(LedgerUnavailable):
            with store.transaction():
                pass


class TestPrefixEnd(unittest.TestCase):

    def test_prefix_end(self):
        self.assertEqual(prefix_end("TAG_F1_"), "TAG_F1`")
        self.assertTrue("TAG_F1_zzz" < prefix_end("TAG_F1_"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
