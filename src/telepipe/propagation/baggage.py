"""
W3C Baggage propagation (``baggage`` header).

    baggage: userId=alice,serverNode=DF%2028,isProduction=false;ttl=60

Values are percent-encoded on the wire. Properties after ``;`` are accepted
but not kept. Limits follow the W3C recommendation: at most 180 entries,
4096 bytes per entry, 8192 bytes for the whole header.
"""

from urllib.parse import quote, unquote

import structlog

from .base import Carrier, PropagationContext, TextMapPropagator, get_header

logger = structlog.get_logger()

__all__ = [
    "MAX_BAGGAGE_ENTRIES",
    "MAX_BAGGAGE_HEADER_BYTES",
    "W3CBaggagePropagator",
    "format_baggage",
    "parse_baggage",
]

BAGGAGE_HEADER = "baggage"

MAX_BAGGAGE_ENTRIES = 180
MAX_BAGGAGE_ENTRY_BYTES = 4096
MAX_BAGGAGE_HEADER_BYTES = 8192


def parse_baggage(header: str | None) -> dict[str, str]:
    """Parse a baggage header. Oversized headers are ignored entirely."""
    if not header:
        return {}
    if len(header.encode("utf-8")) > MAX_BAGGAGE_HEADER_BYTES:
        logger.debug("propagation.baggage.header_too_long", size=len(header))
        return {}

    entries: dict[str, str] = {}
    for raw in header.split(","):
        if len(entries) >= MAX_BAGGAGE_ENTRIES:
            break
        raw = raw.strip()
        if not raw or len(raw.encode("utf-8")) > MAX_BAGGAGE_ENTRY_BYTES:
            continue
        pair = raw.split(";", 1)[0]
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        entries[unquote(key)] = unquote(value.strip())
    return entries


def format_baggage(entries: dict[str, str]) -> str:
    """Serialise baggage, dropping entries that would break the limits."""
    parts: list[str] = []
    total = 0
    for key, value in list(entries.items())[:MAX_BAGGAGE_ENTRIES]:
        part = f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
        size = len(part) + (1 if parts else 0)
        if len(part) > MAX_BAGGAGE_ENTRY_BYTES or total + size > MAX_BAGGAGE_HEADER_BYTES:
            continue
        parts.append(part)
        total += size
    return ",".join(parts)


class W3CBaggagePropagator(TextMapPropagator):
    name = "baggage"

    def extract(
        self, carrier: Carrier, context: PropagationContext | None = None
    ) -> PropagationContext:
        context = context or PropagationContext()
        entries = parse_baggage(get_header(carrier, BAGGAGE_HEADER))
        if entries:
            context.baggage = {**context.baggage, **entries}
        return context

    def inject(self, carrier: Carrier, context: PropagationContext) -> None:
        header = format_baggage(context.baggage)
        if header:
            carrier[BAGGAGE_HEADER] = header

    @property
    def fields(self) -> set[str]:
        return {BAGGAGE_HEADER}
