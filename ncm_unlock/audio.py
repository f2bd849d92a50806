import logging
from dataclasses import dataclass
from typing import Optional

try:
    import miniaudio  # type: ignore
except Exception:
    miniaudio = None

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioInfo:
    format: str
    sample_rate: int
    nchannels: int
    duration_s: float


def _get_info(audio_bytes: bytes, fmt: str):
    if fmt == "flac":
        return miniaudio.flac_get_info(audio_bytes)
    if fmt == "mp3":
        return miniaudio.mp3_get_info(audio_bytes)
    if fmt == "ogg":
        return miniaudio.vorbis_get_info(audio_bytes)
    return None


def probe(audio_bytes: bytes, fmt: str) -> Optional[AudioInfo]:
    """Read stream parameters from the recovered audio without decoding it all.

    ``m4a`` is not supported by miniaudio and gives ``None``, as does data
    miniaudio cannot parse.
    """
    if miniaudio is None:
        raise RuntimeError("缺少 miniaudio，无法读取音频信息")
    try:
        info = _get_info(audio_bytes, fmt)
    except miniaudio.MiniaudioError as e:
        logger.debug("probe %s failed: %s", fmt, e)
        return None
    if info is None:
        return None
    return AudioInfo(
        format=fmt,
        sample_rate=int(info.sample_rate),
        nchannels=int(info.nchannels),
        duration_s=float(info.duration),
    )
