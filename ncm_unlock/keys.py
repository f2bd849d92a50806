import logging

import numpy as np
from Crypto.Cipher import AES  # type: ignore
from Crypto.Util.Padding import unpad  # type: ignore

from ncm_unlock.container import CORE_KEY, KEY_MARKER, KEY_XOR, ByteCursor
from ncm_unlock.errors import EmptySeed, InvalidKeyLength, KeyUnwrapFailed

logger = logging.getLogger(__name__)


def xor_bytes(data: bytes, value: int) -> bytes:
    return (np.frombuffer(data, dtype=np.uint8) ^ np.uint8(value)).tobytes()


def aes_ecb_decrypt(data: bytes, key: bytes) -> bytes:
    """AES-128-ECB decrypt and strip PKCS#7 padding.

    Raises ``ValueError`` when the input is not block aligned or the padding
    is malformed, which is what a wrong key looks like.
    """
    return unpad(AES.new(key, AES.MODE_ECB).decrypt(data), AES.block_size)


def read_key_block(cur: ByteCursor) -> bytes:
    if cur.remaining < 4:
        raise InvalidKeyLength(0, cur.remaining)
    key_len = cur.read_u32("key length")
    if key_len <= 0 or key_len > cur.remaining:
        raise InvalidKeyLength(key_len, cur.remaining)
    logger.debug("key block: %d bytes at %d", key_len, cur.offset)
    return cur.read(key_len, "key block")


def unwrap_key(block: bytes) -> bytes:
    """Turn the masked key block into the keybox seed."""
    try:
        plain = aes_ecb_decrypt(xor_bytes(block, KEY_XOR), CORE_KEY)
    except ValueError as e:
        raise KeyUnwrapFailed(f"AES 解密失败（{e}）") from e

    if not plain.startswith(KEY_MARKER):
        raise KeyUnwrapFailed("未找到网易云音乐标识")

    seed = plain[len(KEY_MARKER) :]
    nul = seed.find(b"\x00")
    if nul >= 0:
        seed = seed[:nul]
    if not seed:
        raise EmptySeed()
    logger.debug("key seed recovered: %d bytes", len(seed))
    return seed
