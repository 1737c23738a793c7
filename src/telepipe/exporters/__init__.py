"""
Exporters: send pipeline output to stdout, files, memory or an OTLP endpoint.
"""

from .base import Exporter, SendingQueueSettings
from .debug import DebugExporter
from .file import FileExporter
from .memory import MemoryExporter
from .otlp_http import OTLPHTTPExporter, RetryableExportError, parse_retry_after

BUILTIN_EXPORTERS = (
    DebugExporter,
    FileExporter,
    MemoryExporter,
    OTLPHTTPExporter,
)

__all__ = [
    "BUILTIN_EXPORTERS",
    "DebugExporter",
    "Exporter",
    "FileExporter",
    "MemoryExporter",
    "OTLPHTTPExporter",
    "RetryableExportError",
    "SendingQueueSettings",
    "parse_retry_after",
]
