from typing import Any, Dict


class DecodeError(Exception):
    """Base class for everything the decode pipeline reports to its caller.

    ``kind`` is a stable identifier for the failure, ``details`` carries the
    diagnostic payload (observed bytes, lengths, scores) so that callers can
    report it without parsing the message.
    """

    kind = "DecodeError"
    recoverable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self), **self.details}


class InvalidHeader(DecodeError):
    kind = "InvalidHeader"

    def __init__(self, observed: bytes) -> None:
        super().__init__(f"不是标准 NCM 文件（文件头不匹配）: {observed!r}", observed=observed.hex())
        self.observed = observed


class InvalidKeyLength(DecodeError):
    kind = "InvalidKeyLength"

    def __init__(self, length: int, available: int) -> None:
        super().__init__(f"密钥块长度无效: {length}（剩余 {available} 字节）", length=length, available=available)
        self.length = length
        self.available = available


class KeyUnwrapFailed(DecodeError):
    kind = "KeyUnwrapFailed"

    def __init__(self, reason: str) -> None:
        super().__init__(f"密钥解密失败：{reason}", reason=reason)
        self.reason = reason


class EmptySeed(DecodeError):
    kind = "EmptySeed"

    def __init__(self) -> None:
        super().__init__("NCM 密钥解析失败：密钥为空")


class MetadataDecodeFailed(DecodeError):
    kind = "MetadataDecodeFailed"
    recoverable = True

    def __init__(self, reason: str) -> None:
        super().__init__(f"元数据解析失败：{reason}", reason=reason)
        self.reason = reason


class EmptyAudioPayload(DecodeError):
    kind = "EmptyAudioPayload"

    def __init__(self) -> None:
        super().__init__("没有音频数据")


class UnrecognizedFormat(DecodeError):
    kind = "UnrecognizedFormat"

    def __init__(self, head_hex: str, quality: float) -> None:
        super().__init__(
            f"解密后的数据不是有效的音频格式（文件头: {head_hex}，数据质量评分: {quality:.3f}/1.000）",
            head_hex=head_hex,
            quality=quality,
        )
        self.head_hex = head_hex
        self.quality = quality


class TruncatedContainer(DecodeError):
    kind = "TruncatedContainer"

    def __init__(self, field: str, needed: int, available: int) -> None:
        super().__init__(
            f"NCM 文件不完整：读取 {field} 需要 {needed} 字节，仅剩 {available} 字节",
            field=field,
            needed=needed,
            available=available,
        )
        self.field = field
        self.needed = needed
        self.available = available
