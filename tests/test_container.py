import struct
import unittest

from ncm_unlock.container import MAGIC, ByteCursor, check_header, read_image, skip_crc_and_reserved
from ncm_unlock.errors import InvalidHeader, TruncatedContainer


class ByteCursorTests(unittest.TestCase):
    def test_read_advances(self):
        cur = ByteCursor(b"abcdef")
        self.assertEqual(cur.read(2, "x"), b"ab")
        self.assertEqual(cur.offset, 2)
        self.assertEqual(cur.remaining, 4)
        self.assertEqual(cur.rest(), b"cdef")
        self.assertEqual(cur.remaining, 0)

    def test_read_u32_little_endian(self):
        cur = ByteCursor(struct.pack("<I", 0x01020304))
        self.assertEqual(cur.read_u32("len"), 0x01020304)

    def test_read_past_end(self):
        cur = ByteCursor(b"\x01\x02")
        with self.assertRaises(TruncatedContainer) as ctx:
            cur.read_u32("meta length")
        self.assertEqual(ctx.exception.field, "meta length")
        self.assertEqual(ctx.exception.needed, 4)
        self.assertEqual(ctx.exception.available, 2)
        self.assertEqual(cur.offset, 0)


class HeaderTests(unittest.TestCase):
    def test_valid_header_skips_gap(self):
        cur = ByteCursor(MAGIC + b"\x01\x70" + b"rest")
        check_header(cur)
        self.assertEqual(cur.offset, 10)

    def test_mismatch_reports_observed_bytes(self):
        cur = ByteCursor(b"ID3\x04\x00\x00\x00\x00\x00\x00\x00")
        with self.assertRaises(InvalidHeader) as ctx:
            check_header(cur)
        self.assertEqual(ctx.exception.observed, b"ID3\x04\x00\x00\x00\x00")
        self.assertEqual(ctx.exception.kind, "InvalidHeader")
        self.assertEqual(cur.offset, 0)

    def test_short_buffer(self):
        with self.assertRaises(InvalidHeader):
            check_header(ByteCursor(b"CTEN"))


class ImageTests(unittest.TestCase):
    def test_skip_then_image(self):
        data = b"\x00" * 9 + struct.pack("<I", 3) + b"img" + b"audio"
        cur = ByteCursor(data)
        skip_crc_and_reserved(cur)
        self.assertEqual(read_image(cur), b"img")
        self.assertEqual(cur.rest(), b"audio")

    def test_no_image(self):
        cur = ByteCursor(struct.pack("<I", 0) + b"audio")
        self.assertIsNone(read_image(cur))
        self.assertEqual(cur.offset, 4)

    def test_image_overrun(self):
        cur = ByteCursor(struct.pack("<I", 100) + b"short")
        with self.assertRaises(TruncatedContainer):
            read_image(cur)


if __name__ == "__main__":
    unittest.main()
