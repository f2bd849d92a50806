import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional

from ncm_unlock.container import ByteCursor, check_header, read_image, skip_crc_and_reserved
from ncm_unlock.errors import DecodeError, EmptyAudioPayload
from ncm_unlock.keybox import build_keybox, decrypt_audio
from ncm_unlock.keys import read_key_block, unwrap_key
from ncm_unlock.meta import Metadata, read_metadata
from ncm_unlock.sniff import resolve_format

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class DecodeState(enum.Enum):
    IDLE = "idle"
    HEADER_CHECKED = "header_checked"
    KEY_RECOVERED = "key_recovered"
    META_EXTRACTED = "meta_extracted"
    AUDIO_DECRYPTED = "audio_decrypted"
    FORMAT_RESOLVED = "format_resolved"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: Dict[DecodeState, FrozenSet[DecodeState]] = {
    DecodeState.IDLE: frozenset({DecodeState.HEADER_CHECKED}),
    DecodeState.HEADER_CHECKED: frozenset({DecodeState.KEY_RECOVERED}),
    DecodeState.KEY_RECOVERED: frozenset({DecodeState.META_EXTRACTED, DecodeState.AUDIO_DECRYPTED}),
    DecodeState.META_EXTRACTED: frozenset({DecodeState.AUDIO_DECRYPTED}),
    DecodeState.AUDIO_DECRYPTED: frozenset({DecodeState.FORMAT_RESOLVED}),
    DecodeState.FORMAT_RESOLVED: frozenset({DecodeState.DONE}),
    DecodeState.DONE: frozenset(),
    DecodeState.FAILED: frozenset(),
}

_TERMINAL = frozenset({DecodeState.DONE, DecodeState.FAILED})


@dataclass(frozen=True)
class DecodeResult:
    format: str
    audio_bytes: bytes
    metadata: Metadata
    cover_image: Optional[bytes] = None
    confidence: float = 0.0
    warnings: List[DecodeError] = field(default_factory=list)


class DecodePipeline:
    """Decodes one container. Single use: ``run()`` may only be called once."""

    def __init__(self, data: bytes, on_progress: Optional[ProgressCallback] = None) -> None:
        self._data = data
        self._on_progress = on_progress
        self._state = DecodeState.IDLE
        self._failure: Optional[DecodeError] = None
        self._last_progress = 0

    @property
    def state(self) -> DecodeState:
        return self._state

    @property
    def failure(self) -> Optional[DecodeError]:
        return self._failure

    def _advance(self, new_state: DecodeState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"非法状态转换: {self._state.value} -> {new_state.value}")
        logger.debug("state %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def _progress(self, percent: int) -> None:
        percent = max(self._last_progress, min(100, percent))
        self._last_progress = percent
        if self._on_progress is not None:
            self._on_progress(percent)

    def run(self) -> DecodeResult:
        if self._state is not DecodeState.IDLE:
            raise RuntimeError(f"DecodePipeline 只能运行一次（当前状态: {self._state.value}）")
        try:
            return self._run()
        except DecodeError as e:
            self._failure = e
            self._state = DecodeState.FAILED
            logger.debug("decode failed: %s", e.kind)
            raise

    def _run(self) -> DecodeResult:
        cur = ByteCursor(self._data)
        self._progress(10)

        check_header(cur)
        self._advance(DecodeState.HEADER_CHECKED)
        self._progress(20)

        seed = unwrap_key(read_key_block(cur))
        self._advance(DecodeState.KEY_RECOVERED)
        self._progress(30)

        keybox = build_keybox(seed)
        self._progress(40)

        warnings: List[DecodeError] = []
        metadata, meta_error = read_metadata(cur)
        if meta_error is not None:
            warnings.append(meta_error)
        self._advance(DecodeState.META_EXTRACTED)
        self._progress(50)

        skip_crc_and_reserved(cur)
        cover_image = read_image(cur)
        self._progress(70)

        cipher = cur.rest()
        logger.debug("audio payload: %d bytes", len(cipher))
        if not cipher:
            raise EmptyAudioPayload()
        self._progress(80)

        audio = decrypt_audio(cipher, keybox)
        self._advance(DecodeState.AUDIO_DECRYPTED)
        self._progress(90)

        guess = resolve_format(audio, metadata.format)
        self._advance(DecodeState.FORMAT_RESOLVED)
        result = DecodeResult(
            format=guess.format or "",
            audio_bytes=audio,
            metadata=metadata,
            cover_image=cover_image,
            confidence=guess.confidence,
            warnings=warnings,
        )
        self._advance(DecodeState.DONE)
        self._progress(100)
        logger.info("decoded %s, %d bytes (confidence %.2f)", result.format, len(audio), result.confidence)
        return result


def decode(data: bytes, on_progress: Optional[ProgressCallback] = None) -> DecodeResult:
    return DecodePipeline(data, on_progress=on_progress).run()
