from ncm_unlock.errors import DecodeError
from ncm_unlock.meta import Metadata
from ncm_unlock.ncm import DecodePipeline, DecodeResult, DecodeState, decode

__all__ = ["DecodeError", "DecodePipeline", "DecodeResult", "DecodeState", "Metadata", "decode"]
