"""
Export a filtered subset of a HAR file, optionally sanitized.
"""

import copy
import logging
from typing import List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .models import IndexedEntry

logger = logging.getLogger(__name__)

REDACTED = '[REDACTED]'

SENSITIVE_HEADERS = {
    'authorization',
    'proxy-authorization',
    'cookie',
    'set-cookie',
    'x-api-key',
    'x-auth-token',
    'x-csrf-token',
    'x-xsrf-token',
}

SENSITIVE_PARAM_PATTERNS = ['password', 'passwd', 'secret', 'token', 'auth', 'key', 'session']


def is_sensitive_param(name: str) -> bool:
    lowered = (name or '').lower()
    return any(pattern in lowered for pattern in SENSITIVE_PARAM_PATTERNS)


def redact_url(url: str) -> str:
    """Replace values of sensitive query parameters in a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    params = [
        (name, REDACTED if is_sensitive_param(name) else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(params, safe='[]')))


def _redact_headers(headers: list) -> None:
    for header in headers or []:
        if (header.get('name') or '').lower() in SENSITIVE_HEADERS:
            header['value'] = REDACTED


def _redact_cookies(cookies: list) -> None:
    for cookie in cookies or []:
        cookie['value'] = REDACTED


def sanitize_entry(har_entry: dict) -> dict:
    """
    Redact credentials from one HAR entry (in place).

    Covers sensitive headers, all cookie values, sensitive query parameters
    and sensitive form fields.
    """
    request = har_entry.get('request') or {}
    response = har_entry.get('response') or {}

    _redact_headers(request.get('headers'))
    _redact_headers(response.get('headers'))
    _redact_cookies(request.get('cookies'))
    _redact_cookies(response.get('cookies'))

    if request.get('url'):
        request['url'] = redact_url(request['url'])
    for param in request.get('queryString') or []:
        if is_sensitive_param(param.get('name')):
            param['value'] = REDACTED

    post_data = request.get('postData') or {}
    for param in post_data.get('params') or []:
        if is_sensitive_param(param.get('name')):
            param['value'] = REDACTED

    return har_entry


def strip_entry_bodies(har_entry: dict) -> dict:
    """Remove request and response body text from one HAR entry (in place)."""
    post_data = (har_entry.get('request') or {}).get('postData')
    if isinstance(post_data, dict):
        post_data.pop('text', None)
        post_data.pop('params', None)

    content = (har_entry.get('response') or {}).get('content')
    if isinstance(content, dict):
        content.pop('text', None)
        content.pop('encoding', None)
    return har_entry


def export_har(har_data: dict, entries: List[IndexedEntry],
               sanitize: bool = False, strip_bodies: bool = False) -> dict:
    """
    Build a new HAR document containing only the given entries.

    Args:
        har_data: Parsed source HAR
        entries: Entries to keep (their index points into log.entries)
        sanitize: Redact credentials
        strip_bodies: Drop body text

    Returns:
        HAR dict; the source document is not modified
    """
    log = har_data.get('log') or {}
    raw_entries = log.get('entries') or []

    exported = []
    for entry in entries:
        if entry.index >= len(raw_entries):
            logger.warning(f"Entry e{entry.index} missing from source HAR, skipped")
            continue
        har_entry = copy.deepcopy(raw_entries[entry.index])
        if sanitize:
            sanitize_entry(har_entry)
        if strip_bodies:
            strip_entry_bodies(har_entry)
        exported.append(har_entry)

    new_log = {key: copy.deepcopy(value) for key, value in log.items() if key != 'entries'}
    new_log['entries'] = exported
    return {'log': new_log}
