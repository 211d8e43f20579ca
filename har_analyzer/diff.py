"""
Side-by-side comparison of two HAR entries.
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from .models import IndexedEntry
from .parser import format_bytes, format_duration


class HeaderDiff(BaseModel):
    """A header whose value differs between two entries"""
    scope: str = Field(description="Rq for request headers, Rs for response headers")
    name: str = Field(description="Lower-cased header name")
    first: Optional[str] = Field(default=None, description="Value in the first entry, None if absent")
    second: Optional[str] = Field(default=None, description="Value in the second entry, None if absent")


def _header_map(headers: list) -> dict:
    # Repeated headers: the last value wins
    return {(h.get('name') or '').lower(): h.get('value') or '' for h in headers or []}


def diff_headers(first: dict, second: dict) -> List[HeaderDiff]:
    """Headers present in only one entry or with different values, request side first."""
    diffs = []
    for scope, part in (('Rq', 'request'), ('Rs', 'response')):
        a = _header_map((first.get(part) or {}).get('headers'))
        b = _header_map((second.get(part) or {}).get('headers'))
        for name in sorted(set(a) | set(b)):
            if a.get(name) != b.get(name):
                diffs.append(HeaderDiff(scope=scope, name=name, first=a.get(name), second=b.get(name)))
    return diffs


def diff_properties(first: IndexedEntry, second: IndexedEntry) -> List[Tuple[str, str, str]]:
    """(label, first value, second value) rows of the basic entry properties."""
    return [
        ('Method', first.method, second.method),
        ('URL', first.path, second.path),
        ('Status', f"{first.status} {first.status_text}".strip(), f"{second.status} {second.status_text}".strip()),
        ('Time', format_duration(first.time_ms), format_duration(second.time_ms)),
        ('Req Size', format_bytes(first.request_size), format_bytes(second.request_size)),
        ('Res Size', format_bytes(first.response_size), format_bytes(second.response_size)),
        ('MIME Type', first.mime_type, second.mime_type),
    ]
