import logging
import struct

from ncm_unlock.errors import InvalidHeader, TruncatedContainer

logger = logging.getLogger(__name__)


MAGIC = b"CTENFDAM"
CORE_KEY = bytes.fromhex("687A4852416D736F356B496E62617857")
META_KEY = bytes.fromhex("2331346C6A6B5F215C5D2630553C2728")

KEY_XOR = 0x64
META_XOR = 0x63
KEY_MARKER = b"neteasecloudmusic"
META_PREFIX = b"163 key(Don't modify):"
META_JSON_PREFIX = b"music:"

_GAP_LEN = 2
_CRC_LEN = 4
_RESERVED_LEN = 5


class ByteCursor:
    """Read-only view over the container bytes with a forward-moving offset."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = memoryview(data)
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return max(0, len(self._data) - self._offset)

    def read(self, n: int, field: str) -> bytes:
        if n < 0 or n > self.remaining:
            raise TruncatedContainer(field, needed=n, available=self.remaining)
        out = self._data[self._offset : self._offset + n].tobytes()
        self._offset += n
        return out

    def peek(self, n: int) -> bytes:
        return self._data[self._offset : self._offset + n].tobytes()

    def skip(self, n: int, field: str) -> None:
        if n > self.remaining:
            raise TruncatedContainer(field, needed=n, available=self.remaining)
        self._offset += n

    def read_u32(self, field: str) -> int:
        return struct.unpack("<I", self.read(4, field))[0]

    def rest(self) -> bytes:
        out = self._data[self._offset :].tobytes()
        self._offset = len(self._data)
        return out


def check_header(cur: ByteCursor) -> None:
    observed = cur.peek(len(MAGIC))
    if observed != MAGIC:
        raise InvalidHeader(observed)
    cur.skip(len(MAGIC) + _GAP_LEN, "header")
    logger.debug("header ok, cursor=%d", cur.offset)


def skip_crc_and_reserved(cur: ByteCursor) -> None:
    cur.skip(_CRC_LEN, "crc32")
    cur.skip(_RESERVED_LEN, "reserved")


def read_image(cur: ByteCursor) -> bytes | None:
    image_len = cur.read_u32("image length")
    if image_len == 0:
        logger.debug("no cover image")
        return None
    image = cur.read(image_len, "cover image")
    logger.debug("cover image: %d bytes", image_len)
    return image
