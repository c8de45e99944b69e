import shutil
import tempfile
import unittest

from pdpaudit import FileSystemBlockStore, InMemoryBlockStore


class BlockStoreContract:

    def test_put_get(self):
        self.store.put_block("F1", 0, b"abc")
        self.assertEqual(self.store.get_block("F1", 0), b"abc")
        self.assertIsNone(self.store.get_block("F1", 1))
        self.assertIsNone(self.store.get_block("F2", 0))

    def test_overwrite(self):
        self.store.put_block("F1", 0, b"abc")
        self.store.put_block("F1", 0, b"xyz")
        self.assertEqual(self.store.get_block("F1", 0), b"xyz")

    def test_list_and_delete(self):
        for i in (10, 2, 0):
            self.store.put_block("F1", i, b"x")
        self.store.put_block("F1_x", 5, b"y")
        self.assertEqual(self.store.list_indices("F1"), [0, 2, 10])
        self.assertTrue(self.store.delete_block("F1", 2))
        self.assertFalse(self.store.delete_block("F1", 2))
        self.assertEqual(self.store.list_indices("F1"), [0, 10])
        self.assertEqual(self.store.list_indices("nope"), [])


class TestInMemoryBlockStore(BlockStoreContract, unittest.TestCase):

    def setUp(self):
        self.store = InMemoryBlockStore()


class TestFileSystemBlockStore(BlockStoreContract, unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.store = FileSystemBlockStore(self.tmp)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_unsafe_file_ids(self):
        self.store.put_block("../../etc/passwd", 0, b"x")
        self.assertEqual(self.store.get_block("../../etc/passwd", 0), b"x")


if __name__ == "__main__":
    unittest.main(verbosity=2)
