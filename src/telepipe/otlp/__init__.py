"""
OTLP/JSON wire format.
"""

from .codec import OTLPDecodeError, decode, decode_json, encode, encode_json, request_signal

__all__ = [
    "OTLPDecodeError",
    "decode",
    "decode_json",
    "encode",
    "encode_json",
    "request_signal",
]
