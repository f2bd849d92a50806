import unittest

from ncm_fixtures import SEED, reference_keybox
from ncm_unlock.errors import EmptyAudioPayload, EmptySeed
from ncm_unlock.keybox import build_keybox, decrypt_audio, iter_decrypt


def _rc4_keystream(seed: bytes, n: int) -> bytes:
    s = list(range(256))
    j = 0
    for i in range(256):
        j = (j + s[i] + seed[i % len(seed)]) & 0xFF
        s[i], s[j] = s[j], s[i]
    out = bytearray()
    i = j = 0
    for _ in range(n):
        i = (i + 1) & 0xFF
        j = (j + s[i]) & 0xFF
        s[i], s[j] = s[j], s[i]
        out.append(s[(s[i] + s[j]) & 0xFF])
    return bytes(out)


class KeyboxTests(unittest.TestCase):
    def test_matches_reference(self):
        self.assertEqual(build_keybox(SEED), reference_keybox(SEED))

    def test_deterministic(self):
        self.assertEqual(build_keybox(b"abc"), build_keybox(b"abc"))
        self.assertNotEqual(build_keybox(b"abc"), build_keybox(b"abd"))
        self.assertEqual(len(build_keybox(b"x")), 256)

    def test_not_plain_rc4(self):
        self.assertNotEqual(build_keybox(SEED), _rc4_keystream(SEED, 256))

    def test_empty_seed(self):
        with self.assertRaises(EmptySeed):
            build_keybox(b"")


class DecryptAudioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.box = build_keybox(SEED)

    def test_zero_ciphertext_yields_keybox_cycle(self):
        out = decrypt_audio(bytes(1000), self.box)
        for p in range(1000):
            self.assertEqual(out[p], self.box[p % 256])
        for p in range(1000 - 256):
            self.assertEqual(out[p], out[p + 256])

    def test_offset_is_absolute(self):
        cipher = bytes((i * 31) & 0xFF for i in range(700))
        whole = decrypt_audio(cipher, self.box)
        self.assertEqual(decrypt_audio(cipher[300:], self.box, offset=300), whole[300:])
        self.assertEqual(decrypt_audio(cipher[257:258], self.box, offset=257), whole[257:258])

    def test_iter_decrypt_matches_single_pass(self):
        cipher = bytes((i * 13 + 5) & 0xFF for i in range(5000))
        chunks = list(iter_decrypt(cipher, self.box, chunk_size=333))
        self.assertEqual(len(chunks), 16)
        self.assertEqual(b"".join(chunks), decrypt_audio(cipher, self.box))

    def test_involution(self):
        plain = b"OggS" + bytes(range(200))
        self.assertEqual(decrypt_audio(decrypt_audio(plain, self.box), self.box), plain)

    def test_empty_payload(self):
        with self.assertRaises(EmptyAudioPayload):
            decrypt_audio(b"", self.box)
        with self.assertRaises(EmptyAudioPayload):
            list(iter_decrypt(b"", self.box))


if __name__ == "__main__":
    unittest.main()
