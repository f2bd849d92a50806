import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ncm_unlock.errors import UnrecognizedFormat

logger = logging.getLogger(__name__)


FORMATS = ("mp3", "flac", "ogg", "m4a")
DECLARABLE_FORMATS = ("mp3", "flac")


@dataclass(frozen=True)
class FormatGuess:
    format: Optional[str]
    confidence: float


_RULES: List[Tuple[str, Callable[[bytes], bool], float]] = [
    ("flac", lambda d: d[:4] == b"fLaC", 1.0),
    ("mp3", lambda d: len(d) >= 2 and d[0] == 0xFF and d[1] & 0xE0 == 0xE0, 0.95),
    ("mp3", lambda d: d[:3] == b"ID3", 0.90),
    ("ogg", lambda d: d[:4] == b"OggS", 0.95),
    ("m4a", lambda d: d[4:8] == b"ftyp", 0.90),
]


def quality_score(data: bytes) -> float:
    return len(set(data[:256])) / 256


def detect_format(data: bytes) -> FormatGuess:
    for fmt, test, confidence in _RULES:
        if test(data):
            return FormatGuess(format=fmt, confidence=confidence)
    return FormatGuess(format=None, confidence=quality_score(data))


def resolve_format(data: bytes, declared: Optional[str] = None) -> FormatGuess:
    guess = detect_format(data)
    if guess.format is not None:
        logger.debug("detected %s (confidence %.2f)", guess.format, guess.confidence)
        return guess
    if declared in DECLARABLE_FORMATS:
        logger.info("no magic match (quality %.3f), using declared format %s", guess.confidence, declared)
        return FormatGuess(format=declared, confidence=guess.confidence)
    raise UnrecognizedFormat(head_hex=data[:16].hex(" "), quality=guess.confidence)
