"""
Entry filtering logic for HAR sessions.

Each predicate is an independent pure function over one IndexedEntry;
filter_entries combines the predicates selected by an EntryFilter with AND.
"""

import re
from typing import Callable, Dict, List, Optional

from .exceptions import InvalidEntryReferenceError
from .models import EntryFilter, IndexedEntry


# ============================================================================
# PATTERN HELPERS
# ============================================================================

STATUS_CLASS_PATTERN = re.compile(r'^([1-5])xx$', re.IGNORECASE)
EXACT_STATUS_PATTERN = re.compile(r'^\d{3}$')


def glob_to_regex(pattern: str) -> re.Pattern:
    """
    Convert a glob with '*' wildcards into an anchored, case-insensitive regex.

    Every other character is literal, so malformed patterns never raise.

    Examples:
        glob_to_regex('*.example.com') matches 'api.example.com'
        glob_to_regex('api.(v1') matches only 'api.(v1'
    """
    escaped = re.escape(pattern).replace(r'\*', '.*')
    return re.compile(f'^{escaped}$', re.IGNORECASE | re.DOTALL)


def matches_glob(value: str, pattern: str) -> bool:
    return glob_to_regex(pattern).match(value or '') is not None


def matches_status(status: int, spec: str) -> bool:
    """
    Check a status code against a status spec.

    Args:
        status: Entry status code
        spec: '200' (exact), '4xx' (class), '!3xx' / '!404' (negation)

    Returns:
        True if the status satisfies the spec

    Examples:
        matches_status(404, '4xx') → True
        matches_status(301, '!3xx') → False
        matches_status(200, 'ok') → False (literal comparison)
    """
    spec = spec.strip()
    if spec.startswith('!'):
        return not matches_status(status, spec[1:])

    class_match = STATUS_CLASS_PATTERN.match(spec)
    if class_match:
        low = int(class_match.group(1)) * 100
        return low <= status < low + 100

    if EXACT_STATUS_PATTERN.match(spec):
        return status == int(spec)

    # Unrecognized shorthand: literal comparison
    return str(status) == spec


def parse_method_list(methods: str) -> List[str]:
    return [m.strip().upper() for m in methods.split(',') if m.strip()]


# ============================================================================
# PREDICATES
# ============================================================================

def by_domain(entry: IndexedEntry, pattern: str) -> bool:
    return matches_glob(entry.domain, pattern)


def by_url(entry: IndexedEntry, pattern: str) -> bool:
    return matches_glob(entry.url, pattern)


def by_status(entry: IndexedEntry, spec: str) -> bool:
    return matches_status(entry.status, spec)


def by_method(entry: IndexedEntry, methods: str) -> bool:
    return entry.method.upper() in parse_method_list(methods)


def by_type(entry: IndexedEntry, pattern: str) -> bool:
    return matches_glob(entry.mime_type, pattern)


def by_min_time(entry: IndexedEntry, min_time: float) -> bool:
    return entry.time_ms >= min_time


def by_min_size(entry: IndexedEntry, min_size: int) -> bool:
    return entry.response_size >= min_size


# Filter field → predicate, in evaluation order
PREDICATES: Dict[str, Callable] = {
    'domain': by_domain,
    'url': by_url,
    'status': by_status,
    'method': by_method,
    'type': by_type,
    'min_time': by_min_time,
    'min_size': by_min_size,
}


# ============================================================================
# FILTERING
# ============================================================================

def build_predicates(entry_filter: EntryFilter) -> List[Callable[[IndexedEntry], bool]]:
    """
    Bind the predicates selected by a filter to their arguments.

    Args:
        entry_filter: Filter with optional fields

    Returns:
        List of single-argument predicates (empty if no field is set)
    """
    bound = []
    for field, predicate in PREDICATES.items():
        value = getattr(entry_filter, field)
        if value is None:
            continue
        bound.append(lambda entry, _p=predicate, _v=value: _p(entry, _v))
    return bound


def filter_entries(entries: List[IndexedEntry], entry_filter: Optional[EntryFilter] = None) -> List[IndexedEntry]:
    """
    Select entries matching every predicate of the filter.

    The input order is preserved and limit keeps a prefix of the matches.

    Args:
        entries: Indexed entries
        entry_filter: Selection criteria (None or empty = all entries)

    Returns:
        Matching entries
    """
    if entry_filter is None or entry_filter.is_empty():
        return entries

    predicates = build_predicates(entry_filter)
    matched = [entry for entry in entries if all(p(entry) for p in predicates)]

    if entry_filter.limit is not None:
        matched = matched[:max(0, entry_filter.limit)]
    return matched


def group_by_domain(entries: List[IndexedEntry]) -> Dict[str, List[IndexedEntry]]:
    """Group entries by domain, keeping first-seen domain order."""
    groups: Dict[str, List[IndexedEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.domain, []).append(entry)
    return groups


def parse_entry_index(reference: str) -> int:
    """
    Parse an entry reference.

    Examples:
        parse_entry_index('e14') → 14
        parse_entry_index('14') → 14

    Raises:
        InvalidEntryReferenceError: If the reference is not e<N> or <N>
    """
    cleaned = reference.strip()
    if cleaned[:1] in ('e', 'E'):
        cleaned = cleaned[1:]
    if not re.fullmatch(r'[0-9]+', cleaned):
        raise InvalidEntryReferenceError(
            f'Invalid entry reference: "{reference}". Use format like "e14" or "14".'
        )
    return int(cleaned)
