import logging
import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from ncm_unlock.errors import DecodeError
from ncm_unlock.ncm import DecodeResult, ProgressCallback, decode

logger = logging.getLogger(__name__)

_MIME_TYPES = {
    "flac": "audio/flac",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
}


@dataclass(frozen=True)
class ProcessResult:
    success: bool
    filename: str
    original_format: str
    converted_format: str
    output_filename: Optional[str] = None
    result: Optional[DecodeResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


def output_filename(name: str, fmt: str) -> str:
    base, _ext = os.path.splitext(os.path.basename(name))
    return f"{base or name}.{fmt}"


def mime_type(fmt: str) -> str:
    return _MIME_TYPES.get(fmt, "application/octet-stream")


def image_extension(data: bytes) -> str:
    if data[:3] == b"\xff\xd8\xff":
        return ".jpg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return ".png"
    return ".img"


def _extension(name: str) -> str:
    return os.path.splitext(name)[1].lower().lstrip(".")


def decode_bytes(name: str, data: bytes, on_progress: Optional[ProgressCallback] = None) -> ProcessResult:
    ext = _extension(name)
    if ext != "ncm":
        return ProcessResult(
            success=False,
            filename=name,
            original_format=ext or "unknown",
            converted_format="none",
            error="目前仅支持NCM格式文件",
            error_kind="UnsupportedExtension",
        )
    try:
        result = decode(data, on_progress=on_progress)
    except DecodeError as e:
        logger.error("处理文件失败: %s: %s", name, e)
        return ProcessResult(
            success=False,
            filename=name,
            original_format="ncm",
            converted_format="none",
            error=str(e),
            error_kind=e.kind,
        )
    return ProcessResult(
        success=True,
        filename=name,
        original_format="ncm",
        converted_format=result.format,
        output_filename=output_filename(name, result.format),
        result=result,
    )


def process_file(path: str, on_progress: Optional[ProgressCallback] = None) -> ProcessResult:
    name = os.path.basename(path)
    if _extension(name) != "ncm":
        return decode_bytes(name, b"", on_progress=on_progress)
    logger.debug("开始处理文件: %s", path)
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.error("读取文件失败: %s: %s", path, e)
        return ProcessResult(
            success=False,
            filename=name,
            original_format="ncm",
            converted_format="none",
            error=str(e),
            error_kind="ReadError",
        )
    return decode_bytes(name, data, on_progress=on_progress)


def process_files(
    paths: Iterable[str],
    on_file_progress: Optional[Callable[[int, str, int], None]] = None,
    on_overall_progress: Optional[Callable[[int, int], None]] = None,
) -> List[ProcessResult]:
    """Decode files one after another; a failed file does not stop the batch."""
    paths = list(paths)
    results: List[ProcessResult] = []
    for i, path in enumerate(paths):
        name = os.path.basename(path)

        def _on_progress(p: int, i: int = i, name: str = name) -> None:
            if on_file_progress is not None:
                on_file_progress(i, name, p)

        results.append(process_file(path, on_progress=_on_progress))
        if on_overall_progress is not None:
            on_overall_progress(i + 1, len(paths))
    return results
