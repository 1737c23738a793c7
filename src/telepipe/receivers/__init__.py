"""
Receivers: bring telemetry into the collector.
"""

from .base import Receiver
from .file import FileReceiver
from .memory import MemoryReceiver
from .otlp import OTLPReceiver, build_app

BUILTIN_RECEIVERS = (
    FileReceiver,
    MemoryReceiver,
    OTLPReceiver,
)

__all__ = [
    "BUILTIN_RECEIVERS",
    "FileReceiver",
    "MemoryReceiver",
    "OTLPReceiver",
    "Receiver",
    "build_app",
]
