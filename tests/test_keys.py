import struct
import unittest

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from ncm_fixtures import SEED, key_block, xor
from ncm_unlock.container import ByteCursor
from ncm_unlock.errors import EmptySeed, InvalidKeyLength, KeyUnwrapFailed
from ncm_unlock.keys import read_key_block, unwrap_key


class ReadKeyBlockTests(unittest.TestCase):
    def test_reads_declared_length(self):
        cur = ByteCursor(struct.pack("<I", 3) + b"abcde")
        self.assertEqual(read_key_block(cur), b"abc")
        self.assertEqual(cur.offset, 7)

    def test_zero_length(self):
        with self.assertRaises(InvalidKeyLength) as ctx:
            read_key_block(ByteCursor(struct.pack("<I", 0) + b"abc"))
        self.assertEqual(ctx.exception.length, 0)

    def test_overrun(self):
        with self.assertRaises(InvalidKeyLength) as ctx:
            read_key_block(ByteCursor(struct.pack("<I", 0xFFFFFFFF) + b"abc"))
        self.assertEqual(ctx.exception.available, 3)

    def test_missing_length_field(self):
        with self.assertRaises(InvalidKeyLength):
            read_key_block(ByteCursor(b"\x01"))


class UnwrapKeyTests(unittest.TestCase):
    def test_recovers_seed(self):
        self.assertEqual(unwrap_key(key_block(SEED)), SEED)

    def test_truncates_at_nul(self):
        self.assertEqual(unwrap_key(key_block(b"abc\x00\x00\x00junk")), b"abc")

    def test_missing_marker(self):
        with self.assertRaises(KeyUnwrapFailed):
            unwrap_key(key_block(SEED, prefix=b"someothermusicapp"))

    def test_marker_not_at_start(self):
        with self.assertRaises(KeyUnwrapFailed):
            unwrap_key(key_block(SEED, prefix=b"xx" + b"neteasecloudmusic"))

    def test_wrong_key_constant(self):
        cipher = AES.new(b"0123456789abcdef", AES.MODE_ECB).encrypt(pad(b"neteasecloudmusic" + SEED, 16))
        with self.assertRaises(KeyUnwrapFailed):
            unwrap_key(xor(cipher, 0x64))

    def test_not_block_aligned(self):
        with self.assertRaises(KeyUnwrapFailed):
            unwrap_key(b"\x01" * 17)

    def test_empty_seed(self):
        with self.assertRaises(EmptySeed):
            unwrap_key(key_block(b""))

    def test_seed_starting_with_nul(self):
        with self.assertRaises(EmptySeed):
            unwrap_key(key_block(b"\x00abc"))


if __name__ == "__main__":
    unittest.main()
