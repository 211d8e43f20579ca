"""
HAR loading, indexing, and content extraction utilities.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

from .exceptions import HarParseError
from .models import HarSession, IndexedEntry, SessionStats

logger = logging.getLogger(__name__)


# MIME types whose bodies are shown by default
INTERESTING_MIME_TYPES = [
    'application/json',
    'text/json',
    'text/html',
    'text/xml',
    'application/xml',
    'text/plain',
    'application/x-www-form-urlencoded',
    'multipart/form-data',
]

REF_PARTS = ('rq.headers', 'rs.headers', 'rq.body', 'rs.body')


# ============================================================================
# HAR LOADING AND VALIDATION
# ============================================================================

def load_har_file(har_path: Path) -> dict:
    """
    Load HAR file from disk with validation.

    Args:
        har_path: Path to HAR file

    Returns:
        HAR data dict

    Raises:
        HarParseError: If HAR format is invalid
        FileNotFoundError: If file doesn't exist
    """
    har_path = Path(har_path)
    if not har_path.exists():
        raise FileNotFoundError(f"HAR file not found: {har_path}")

    return parse_har_bytes(har_path.read_bytes())


def parse_har_bytes(raw: bytes) -> dict:
    """Decode raw HAR content and check it has log.entries."""
    try:
        data = json.loads(raw.decode('utf-8-sig'))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HarParseError(f"HAR file is not valid JSON: {e}")

    if not isinstance(data, dict) or not isinstance(data.get('log'), dict) \
            or not isinstance(data['log'].get('entries'), list):
        raise HarParseError("Invalid HAR format: missing log.entries")

    return data


def compute_source_hash(raw: bytes) -> str:
    """Content hash identifying a session (first 16 hex chars of SHA-256)."""
    return hashlib.sha256(raw).hexdigest()[:16]


# ============================================================================
# ENTRY INDEXING
# ============================================================================

def extract_domain_and_path(url: str) -> tuple:
    """
    Split a URL into hostname and path (with query string).

    Examples:
        https://api.example.com/v1/users?page=2 → ('api.example.com', '/v1/users?page=2')
        not a url → ('unknown', 'not a url')
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return 'unknown', url
    if not parsed.scheme or not parsed.hostname:
        return 'unknown', url
    path = parsed.path or '/'
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return parsed.hostname, path


def _non_negative(value) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def build_indexed_entry(entry: dict, index: int) -> IndexedEntry:
    """
    Build the compact, indexed record for one HAR entry.

    Args:
        entry: Raw HAR entry dict
        index: Position of the entry in log.entries

    Returns:
        IndexedEntry for the entry

    Raises:
        HarParseError: If the entry is not a JSON object
    """
    if not isinstance(entry, dict):
        raise HarParseError(f"Entry {index} is not an object")

    request = entry.get('request') or {}
    response = entry.get('response') or {}
    content = response.get('content') or {}
    post_data = request.get('postData') or {}

    url = request.get('url', '')
    domain, path = extract_domain_and_path(url)
    status = int(response.get('status') or 0)
    request_body_size = request.get('bodySize', 0)
    response_body_size = response.get('bodySize', 0)

    return IndexedEntry(
        index=index,
        method=request.get('method', 'GET'),
        url=url,
        domain=domain,
        path=path,
        status=status,
        status_text=response.get('statusText') or '',
        mime_type=content.get('mimeType') or '',
        request_size=_non_negative(request_body_size),
        response_size=_non_negative(content.get('size', 0)),
        time_ms=float(entry.get('time') or 0),
        started_date_time=entry.get('startedDateTime') or '',
        request_body_size=_non_negative(request_body_size),
        response_body_size=_non_negative(response_body_size),
        request_body_mime_type=post_data.get('mimeType') or '',
        has_request_body=_non_negative(request_body_size) > 0,
        has_response_body=_non_negative(response_body_size) > 0,
        is_error=status >= 400,
        is_redirect=300 <= status < 400,
        redirect_url=response.get('redirectURL') or None,
    )


def status_bucket(status: int) -> str:
    """Status class label: 200 → '2xx', 404 → '4xx'."""
    return f"{status // 100}xx"


def compute_stats(entries: List[IndexedEntry]) -> SessionStats:
    """
    Compute summary statistics over indexed entries.

    Args:
        entries: Indexed entries in file order

    Returns:
        SessionStats
    """
    stats = SessionStats(entry_count=len(entries))

    for entry in entries:
        bucket = status_bucket(entry.status)
        stats.status_distribution[bucket] = stats.status_distribution.get(bucket, 0) + 1
        stats.domains[entry.domain] = stats.domains.get(entry.domain, 0) + 1
        mime = entry.mime_type or 'unknown'
        stats.mime_type_distribution[mime] = stats.mime_type_distribution.get(mime, 0) + 1

        stats.total_size_bytes += entry.response_size
        stats.total_time_ms += entry.time_ms
        if entry.is_error:
            stats.error_count += 1

    if entries:
        stats.start_time = entries[0].started_date_time
        stats.end_time = entries[-1].started_date_time

    return stats


def build_domain_index(entries: List[IndexedEntry]) -> Dict[str, List[int]]:
    """Map each domain to the indices of its entries, in file order."""
    domain_index: Dict[str, List[int]] = {}
    for entry in entries:
        domain_index.setdefault(entry.domain, []).append(entry.index)
    return domain_index


def index_har_entries(raw_entries: list) -> List[IndexedEntry]:
    """
    Index every entry of log.entries.

    Entries that cannot be normalized are skipped with a warning; the
    remaining entries keep their original positions as index.
    """
    entries = []
    for index, raw_entry in enumerate(raw_entries):
        try:
            entries.append(build_indexed_entry(raw_entry, index))
        except (HarParseError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed entry e{index}: {e}")
            continue
    return entries


def parse_har_file(har_path: Path, raw: Optional[bytes] = None) -> HarSession:
    """
    Parse a HAR file into a new session record.

    Args:
        har_path: Path to HAR file
        raw: File content, if already read

    Returns:
        HarSession (not yet persisted)
    """
    har_path = Path(har_path).resolve()
    if raw is None:
        if not har_path.exists():
            raise FileNotFoundError(f"HAR file not found: {har_path}")
        raw = har_path.read_bytes()

    har_data = parse_har_bytes(raw)
    entries = index_har_entries(har_data['log']['entries'])
    logger.debug(f"Indexed {len(entries)} entries from {har_path}")

    now = time.time()
    return HarSession(
        source_file=str(har_path),
        source_hash=compute_source_hash(raw),
        created_at=now,
        last_accessed_at=now,
        stats=compute_stats(entries),
        entries=entries,
        domains=build_domain_index(entries),
    )


# ============================================================================
# CONTENT EXTRACTION
# ============================================================================

def is_interesting_mime_type(mime_type: str) -> bool:
    """True if bodies of this MIME type are shown by default."""
    normalized = (mime_type or '').split(';')[0].strip().lower()
    return normalized in INTERESTING_MIME_TYPES or normalized.startswith('application/json')


def format_headers(headers: list) -> str:
    return '\n'.join(f"{h.get('name', '')}: {h.get('value', '')}" for h in headers or [])


def extract_content(har_entry: dict, part: str) -> Optional[str]:
    """
    Extract the content a reference part points at.

    Args:
        har_entry: Raw HAR entry dict
        part: One of rq.headers, rs.headers, rq.body, rs.body

    Returns:
        Content string, or None if there is nothing at that part
    """
    request = har_entry.get('request') or {}
    response = har_entry.get('response') or {}

    if part == 'rq.headers':
        return format_headers(request.get('headers'))
    if part == 'rs.headers':
        return format_headers(response.get('headers'))
    if part == 'rq.body':
        return (request.get('postData') or {}).get('text')
    if part == 'rs.body':
        content = response.get('content') or {}
        if content.get('encoding') == 'base64':
            return f"[binary: {content.get('mimeType', '')}, {format_bytes(content.get('size', 0))}]"
        return content.get('text')
    return None


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def format_bytes(size) -> str:
    """
    Human-readable byte size.

    Examples:
        512 → '512 B'
        5000 → '4.9 KB'
    """
    size = _non_negative(size)
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_duration(ms) -> str:
    """Human-readable duration from milliseconds."""
    ms = float(ms or 0)
    if ms < 0:
        return '-'
    if ms < 1000:
        return f"{ms:.0f}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    return f"{ms / 60000:.1f}m"


def truncate_path(path: str, max_length: int = 60) -> str:
    if len(path) <= max_length:
        return path
    return path[:max_length - 3] + '...'
