import logging
from typing import Iterator

import numpy as np

from ncm_unlock.errors import EmptyAudioPayload, EmptySeed

logger = logging.getLogger(__name__)


def build_keybox(seed: bytes) -> bytes:
    """Derive the 256-byte table used to decrypt the audio payload.

    The first half is the RC4 key schedule. The table itself is not an RC4
    keystream: entry ``i`` is ``S[(S[i+1] + S[(i+1) + S[i+1]]) & 0xFF]`` and
    the same table is applied to every 256-byte stretch of the payload.
    """
    if not seed:
        raise EmptySeed()

    s = bytearray(range(256))
    key_len = len(seed)
    j = 0
    for i in range(256):
        j = (j + s[i] + seed[i % key_len]) & 0xFF
        s[i], s[j] = s[j], s[i]

    box = bytearray(256)
    for i in range(256):
        idx = (i + 1) & 0xFF
        si = s[idx]
        sj = s[(idx + si) & 0xFF]
        box[i] = s[(si + sj) & 0xFF]
    return bytes(box)


def _stream(keybox: bytes, offset: int, n: int) -> np.ndarray:
    box = np.frombuffer(keybox, dtype=np.uint8)
    return np.resize(np.roll(box, -(offset & 0xFF)), n)


def decrypt_audio(cipher: bytes, keybox: bytes, offset: int = 0) -> bytes:
    """XOR ``cipher`` with the keybox; ``offset`` is the absolute position of its first byte."""
    if not cipher:
        raise EmptyAudioPayload()
    data = np.frombuffer(cipher, dtype=np.uint8)
    out = data ^ _stream(keybox, offset, data.shape[0])
    logger.debug("decrypted %d bytes from offset %d", data.shape[0], offset)
    return out.tobytes()


def iter_decrypt(cipher: bytes, keybox: bytes, chunk_size: int = 0x8000) -> Iterator[bytes]:
    if not cipher:
        raise EmptyAudioPayload()
    if chunk_size <= 0:
        raise ValueError("chunk_size 必须为正数")
    view = memoryview(cipher)
    for start in range(0, len(view), chunk_size):
        yield decrypt_audio(view[start : start + chunk_size], keybox, offset=start)
