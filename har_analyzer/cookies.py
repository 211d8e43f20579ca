"""
Cookie flow across the entries of a HAR file.

A cookie is "set" by the first response carrying a Set-Cookie header for its
name and "sent" by every request whose cookies array or Cookie header names
it. Cookies sent but never set in the capture are reported as pre-existing.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PRE_EXISTING = '(pre-existing)'


class CookieInfo(BaseModel):
    """Where a cookie was set and which requests carried it"""
    name: str = Field(description="Cookie name")
    set_by_entry: Optional[int] = Field(default=None, description="Index of the entry that set it, if any")
    set_by_url: str = Field(default=PRE_EXISTING, description="URL of the setting request")
    flags: List[str] = Field(default_factory=list, description="HttpOnly, Secure and SameSite attributes")
    sent_in_entries: List[int] = Field(default_factory=list, description="Entries whose request carried it")


def parse_cookie_name(set_cookie_value: str) -> str:
    return set_cookie_value.split('=', 1)[0].strip()


def extract_cookie_flags(set_cookie_value: str) -> List[str]:
    lowered = set_cookie_value.lower()
    flags = []
    if 'httponly' in lowered:
        flags.append('HttpOnly')
    if 'secure' in lowered:
        flags.append('Secure')
    for same_site in ('Strict', 'Lax', 'None'):
        if f'samesite={same_site.lower()}' in lowered:
            flags.append(f'SameSite={same_site}')
            break
    return flags


def collapse_entry_ranges(indices: List[int]) -> str:
    """
    Compact list of entry references.

    Examples:
        [] → 'none'
        [1, 2, 3, 7] → '[e1..e3], e7'
    """
    if not indices:
        return 'none'

    ordered = sorted(indices)
    ranges = []
    start = end = ordered[0]
    for index in ordered[1:]:
        if index == end + 1:
            end = index
            continue
        ranges.append(f"e{start}" if start == end else f"[e{start}..e{end}]")
        start = end = index
    ranges.append(f"e{start}" if start == end else f"[e{start}..e{end}]")
    return ', '.join(ranges)


def _mark_sent(cookies: Dict[str, CookieInfo], name: str, index: int) -> None:
    info = cookies.get(name)
    if info is None:
        cookies[name] = CookieInfo(name=name, sent_in_entries=[index])
    elif index not in info.sent_in_entries:
        info.sent_in_entries.append(index)


def analyze_cookies(raw_entries: list) -> List[CookieInfo]:
    """
    Track every cookie through the capture.

    Args:
        raw_entries: log.entries of the HAR document

    Returns:
        CookieInfo per cookie name, sorted by name
    """
    cookies: Dict[str, CookieInfo] = {}

    for index, har_entry in enumerate(raw_entries):
        if not isinstance(har_entry, dict):
            continue
        response = har_entry.get('response') or {}
        for header in response.get('headers') or []:
            if (header.get('name') or '').lower() != 'set-cookie':
                continue
            value = header.get('value') or ''
            name = parse_cookie_name(value)
            if name and name not in cookies:
                cookies[name] = CookieInfo(
                    name=name,
                    set_by_entry=index,
                    set_by_url=(har_entry.get('request') or {}).get('url', ''),
                    flags=extract_cookie_flags(value),
                )

    for index, har_entry in enumerate(raw_entries):
        if not isinstance(har_entry, dict):
            continue
        request = har_entry.get('request') or {}
        for cookie in request.get('cookies') or []:
            if cookie.get('name'):
                _mark_sent(cookies, cookie['name'], index)

        for header in request.get('headers') or []:
            if (header.get('name') or '').lower() != 'cookie':
                continue
            for pair in (header.get('value') or '').split(';'):
                name = pair.split('=', 1)[0].strip()
                if name:
                    _mark_sent(cookies, name, index)

    logger.debug(f"Tracked {len(cookies)} cookies across {len(raw_entries)} entries")
    return sorted(cookies.values(), key=lambda c: c.name)
