import base64
import binascii
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ncm_unlock.container import META_JSON_PREFIX, META_KEY, META_PREFIX, META_XOR, ByteCursor
from ncm_unlock.errors import MetadataDecodeFailed
from ncm_unlock.keys import aes_ecb_decrypt, xor_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Metadata:
    """Track info embedded in the container ("163 key" JSON).

    Every field is optional; an absent or unreadable block gives a record
    whose ``to_dict()`` is ``{}``.
    """

    music_id: Optional[int] = None
    music_name: Optional[str] = None
    artist: List[Tuple[str, Any]] = field(default_factory=list)
    album: Optional[str] = None
    format: Optional[str] = None
    duration: Optional[int] = None
    bitrate: Optional[int] = None
    album_pic: Optional[str] = None
    alias: List[str] = field(default_factory=list)
    trans_names: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Metadata":
        artist: List[Tuple[str, Any]] = []
        for a in _as_list(obj.get("artist")):
            if isinstance(a, (list, tuple)) and a:
                artist.append((str(a[0]), a[1] if len(a) > 1 else None))
            elif isinstance(a, str):
                artist.append((a, None))
        fmt = obj.get("format")
        return cls(
            music_id=_as_int(obj.get("musicId")),
            music_name=_as_str(obj.get("musicName")),
            artist=artist,
            album=_as_str(obj.get("album")),
            format=fmt.lower() if isinstance(fmt, str) and fmt else None,
            duration=_as_int(obj.get("duration")),
            bitrate=_as_int(obj.get("bitrate")),
            album_pic=_as_str(obj.get("albumPic")),
            alias=[str(x) for x in _as_list(obj.get("alias"))],
            trans_names=[str(x) for x in _as_list(obj.get("transNames"))],
            raw=dict(obj),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)

    @property
    def is_empty(self) -> bool:
        return not self.raw

    @property
    def artist_names(self) -> List[str]:
        return [name for name, _id in self.artist]


def _as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if math.isfinite(v) else None
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    return None


def _as_list(v: Any) -> List[Any]:
    return v if isinstance(v, list) else []


def _as_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s or None


def decrypt_metadata(block: bytes) -> Metadata:
    if not block:
        return Metadata()
    masked = xor_bytes(block, META_XOR)
    try:
        cipher = base64.b64decode(masked[len(META_PREFIX) :], validate=True)
    except (binascii.Error, ValueError) as e:
        raise MetadataDecodeFailed(f"base64 解码失败（{e}）") from e
    try:
        plain = aes_ecb_decrypt(cipher, META_KEY)
    except ValueError as e:
        raise MetadataDecodeFailed(f"AES 解密失败（{e}）") from e
    if not plain.startswith(META_JSON_PREFIX):
        raise MetadataDecodeFailed("缺少 music: 前缀")
    try:
        obj = json.loads(plain[len(META_JSON_PREFIX) :].decode("utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        raise MetadataDecodeFailed(f"JSON 解析失败（{e}）") from e
    if not isinstance(obj, dict):
        raise MetadataDecodeFailed(f"JSON 不是对象: {type(obj).__name__}")
    try:
        return Metadata.from_dict(obj)
    except (TypeError, ValueError, OverflowError) as e:
        raise MetadataDecodeFailed(f"字段类型异常（{e}）") from e


def read_metadata(cur: ByteCursor) -> Tuple[Metadata, Optional[MetadataDecodeFailed]]:
    """Read the metadata block at the cursor.

    The cursor always ends up past the block. Decryption problems never
    propagate: they come back as the second element next to an empty record.
    """
    meta_len = cur.read_u32("meta length")
    if meta_len == 0:
        logger.debug("no metadata block")
        return Metadata(), None
    block = cur.read(meta_len, "meta block")
    try:
        meta = decrypt_metadata(block)
    except MetadataDecodeFailed as e:
        logger.warning("%s", e)
        return Metadata(), e
    logger.debug("metadata: %s - %s (%s)", meta.music_name, ", ".join(meta.artist_names), meta.format)
    return meta, None
