"""
Tag generation: determinism, binding to block identity, empty blocks.
"""

import unittest

from pdpaudit import EmptyBlock, Tag, generate_tag, generate_tags
from pdpaudit.hashing import block_digest, block_digest_bytes
from pdpaudit.tags import digest_block

from support import SMALL_PARAMS, make_blocks


class TestTagGeneration(unittest.TestCase):

    def setUp(self):
        self.blocks = make_blocks(4)

    def test_deterministic(self):
        t1 = generate_tag("F1", 0, self.blocks[0], SMALL_PARAMS)
        t2 = generate_tag("F1", 0, self.blocks[0], SMALL_PARAMS)
        self.assertEqual(t1, t2)

    def test_tag_is_g_to_digest(self):
        tag = generate_tag("F1", 2, self.blocks[2], SMALL_PARAMS)
        m = block_digest("F1", 2, self.blocks[2], SMALL_PARAMS.n)
        self.assertEqual(tag.tag_value, pow(SMALL_PARAMS.g, m, SMALL_PARAMS.n))
        self.assertLess(tag.tag_value, SMALL_PARAMS.n)

    def test_bound_to_index_and_file(self):
        data = self.blocks[0]
        base = generate_tag("F1", 0, data, SMALL_PARAMS).tag_value
        self.assertNotEqual(base, generate_tag("F1", 1, data, SMALL_PARAMS).tag_value)
        self.assertNotEqual(base, generate_tag("F2", 0, data, SMALL_PARAMS).tag_value)

    def test_content_change_changes_tag(self):
        data = self.blocks[0]
        altered = bytes([data[0] ^ 1]) + data[1:]
        self.assertNotEqual(
            generate_tag("F1", 0, data, SMALL_PARAMS).tag_value,
            generate_tag("F1", 0, altered, SMALL_PARAMS).tag_value,
        )

    def test_digest_encoding_is_unambiguous(self):
        # Shifting a byte between file id and ciphertext must not collide.
        self.assertNotEqual(
            block_digest_bytes("F1", 0, b"2data"),
            block_digest_bytes("F12", 0, b"data"),
        )

    def test_empty_block_rejected(self):
        with self.assertRaises(EmptyBlock) as ctx:
            generate_tag("F1", 3, b"", SMALL_PARAMS)
        self.assertEqual(ctx.exception.block_index, 3)
        self.assertEqual(ctx.exception.code, "EMPTY_BLOCK")

    def test_invalid_block_reference(self):
        with self.assertRaises(ValueError):
            digest_block("", 0, b"x", SMALL_PARAMS)
        with self.assertRaises(ValueError):
            digest_block("F1", -1, b"x", SMALL_PARAMS)
        with self.assertRaises(TypeError):
            digest_block("F1", "0", b"x", SMALL_PARAMS)


class TestBatchTagging(unittest.TestCase):

    def test_list_is_positional(self):
        blocks = make_blocks(3)
        tags = generate_tags("F1", blocks, SMALL_PARAMS)
        self.assertEqual([t.block_index for t in tags], [0, 1, 2])
        self.assertEqual(tags[1], generate_tag("F1", 1, blocks[1], SMALL_PARAMS))

    def test_mapping_keeps_indices(self):
        blocks = make_blocks(2)
        tags = generate_tags("F1", {10: blocks[0], 2: blocks[1]}, SMALL_PARAMS)
        self.assertEqual([t.block_index for t in tags], [2, 10])

    def test_empty_block_fails_whole_batch(self):
        blocks = make_blocks(2) + [b""]
        with self.assertRaises(EmptyBlock):
            generate_tags("F1", blocks, SMALL_PARAMS)

    def test_tag_dict_round_trip(self):
        tag = generate_tag("F1", 7, make_blocks(1)[0], SMALL_PARAMS)
        d = tag.to_dict()
        self.assertEqual(d["tagValue"], format(tag.tag_value, "x"))
        self.assertEqual(Tag.from_dict(d), tag)


if __name__ == "__main__":
    unittest.main(verbosity=2)
