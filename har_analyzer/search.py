"""
Text search across HAR entries (URL, bodies, headers).
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .models import IndexedEntry
from .parser import format_headers

SEARCH_SCOPES = ('url', 'body', 'header', 'all')
CONTEXT_CHARS = 60


class SearchMatch(BaseModel):
    """One entry matching a search query"""
    entry: IndexedEntry = Field(description="Matching entry")
    scope: str = Field(description="Where the match was found: url, body or header")
    context: str = Field(description="Text around the first match")


def extract_context(text: str, query: str, context_len: int = CONTEXT_CHARS) -> Optional[str]:
    """
    Snippet around the first case-insensitive occurrence of query.

    Returns:
        The snippet with "..." marking cut ends and newlines escaped, or None
    """
    idx = text.lower().find(query.lower())
    if idx == -1:
        return None

    start = max(0, idx - context_len // 2)
    end = min(len(text), idx + len(query) + context_len // 2)
    prefix = '...' if start > 0 else ''
    suffix = '...' if end < len(text) else ''
    return f"{prefix}{text[start:end]}{suffix}".replace('\n', '\\n')


def search_in_body(har_entry: dict, query: str) -> Optional[str]:
    response_body = ((har_entry.get('response') or {}).get('content') or {}).get('text') or ''
    request_body = ((har_entry.get('request') or {}).get('postData') or {}).get('text') or ''
    for body in (response_body, request_body):
        found = extract_context(body, query) if body else None
        if found:
            return found
    return None


def search_in_headers(har_entry: dict, query: str) -> Optional[str]:
    for part in ('request', 'response'):
        for header in (har_entry.get(part) or {}).get('headers') or []:
            found = extract_context(format_headers([header]), query)
            if found:
                return found
    return None


def search_entries(
    entries: List[IndexedEntry],
    raw_entries: Optional[list],
    query: str,
    scope: str = 'all',
    limit: int = 20,
) -> List[SearchMatch]:
    """
    Find entries containing query, at most one match per entry.

    Args:
        entries: Entries to search, in order
        raw_entries: log.entries of the source HAR (needed for body/header scopes)
        query: Case-insensitive text to look for
        scope: url, body, header or all
        limit: Stop after this many matches

    Returns:
        Matches in entry order; URL hits take precedence over body and header hits
    """
    if scope not in SEARCH_SCOPES:
        raise ValueError(f"Unknown search scope {scope!r}, expected one of {', '.join(SEARCH_SCOPES)}")

    matches: List[SearchMatch] = []
    for entry in entries:
        if len(matches) >= limit:
            break

        if scope in ('url', 'all'):
            context = extract_context(entry.url, query)
            if context:
                matches.append(SearchMatch(entry=entry, scope='url', context=context))
                continue

        if raw_entries is None or entry.index >= len(raw_entries):
            continue
        har_entry = raw_entries[entry.index]
        if not isinstance(har_entry, dict):
            continue

        if scope in ('body', 'all'):
            context = search_in_body(har_entry, query)
            if context:
                matches.append(SearchMatch(entry=entry, scope='body', context=context))
                continue

        if scope in ('header', 'all'):
            context = search_in_headers(har_entry, query)
            if context:
                matches.append(SearchMatch(entry=entry, scope='header', context=context))

    return matches
