"""
Scan a HAR file for exposed credentials.

Checks each entry for JWTs in the Authorization header, API keys in query
parameters and request headers, cookies set without HttpOnly or Secure, and
sensitive query parameters.
"""

import base64
import binascii
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel, Field

from .export import is_sensitive_param
from .parser import truncate_path

logger = logging.getLogger(__name__)

SEVERITY_ORDER = ('HIGH', 'MEDIUM', 'LOW')

SEVERITY_SYMBOLS = {
    'HIGH': '[!!!]',
    'MEDIUM': '[!!]',
    'LOW': '[!]',
}

API_KEY_PATTERNS = ['api_key', 'apikey', 'x-api-key', 'key', 'secret', 'token']

JWT_PATTERN = re.compile(r'^Bearer\s+(eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*)')


class SecurityFinding(BaseModel):
    """One potential exposure found in an entry"""
    severity: str = Field(description="HIGH, MEDIUM or LOW")
    category: str = Field(description="Kind of exposure")
    entry_index: int = Field(description="Entry the finding belongs to")
    method: str = Field(description="HTTP method of the entry")
    path: str = Field(description="Request path with the host in parentheses")
    detail: str = Field(description="What was found")


def _location(url: str) -> tuple:
    """(display path, query parameters) of a request URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return truncate_path(url), []
    path = parts.path or url
    if parts.hostname:
        path = f"{path} ({parts.hostname})"
    return truncate_path(path), parse_qsl(parts.query, keep_blank_values=True)


def _matches_api_key(name: str) -> bool:
    lowered = name.lower()
    return any(pattern in lowered for pattern in API_KEY_PATTERNS)


def decode_jwt_part(part: str) -> Optional[dict]:
    padded = part + '=' * (-len(part) % 4)
    try:
        decoded = json.loads(base64.urlsafe_b64decode(padded))
    except (binascii.Error, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def scan_jwt(har_entry: dict, index: int, now: float) -> List[SecurityFinding]:
    request = har_entry.get('request') or {}
    auth = next((h.get('value') or '' for h in request.get('headers') or []
                 if (h.get('name') or '').lower() == 'authorization'), '')
    match = JWT_PATTERN.match(auth)
    if not match:
        return []

    parts = match.group(1).split('.')
    header = decode_jwt_part(parts[0]) or {}
    payload = decode_jwt_part(parts[1]) or {}

    extras = []
    if header.get('alg'):
        extras.append(f"alg={header['alg']}")
    exp = payload.get('exp')
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        try:
            expires = datetime.fromtimestamp(exp, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            expires = str(exp)
        expired = ' (EXPIRED)' if exp < now else ''
        extras.append(f"exp={expires}{expired}")

    detail = "JWT detected in Authorization header"
    if extras:
        detail += f" [{', '.join(extras)}]"

    path, _ = _location(request.get('url', ''))
    return [SecurityFinding(
        severity='MEDIUM', category='JWT Exposure', entry_index=index,
        method=request.get('method', ''), path=path, detail=detail,
    )]


def scan_api_keys(har_entry: dict, index: int) -> List[SecurityFinding]:
    request = har_entry.get('request') or {}
    method = request.get('method', '')
    path, params = _location(request.get('url', ''))
    findings = []

    for name, value in params:
        if value and _matches_api_key(name):
            findings.append(SecurityFinding(
                severity='HIGH', category='API Key in Query String', entry_index=index,
                method=method, path=path,
                detail=f'Parameter "{name}" contains potential API key ({len(value)} chars)',
            ))

    for header in request.get('headers') or []:
        name = header.get('name') or ''
        value = header.get('value') or ''
        # Authorization is covered by the JWT check
        if name.lower() == 'authorization' or not value:
            continue
        if _matches_api_key(name):
            findings.append(SecurityFinding(
                severity='HIGH', category='API Key in Header', entry_index=index,
                method=method, path=path,
                detail=f'Header "{name}" contains potential API key ({len(value)} chars)',
            ))
    return findings


def scan_cookies(har_entry: dict, index: int) -> List[SecurityFinding]:
    request = har_entry.get('request') or {}
    findings = []
    for header in (har_entry.get('response') or {}).get('headers') or []:
        if (header.get('name') or '').lower() != 'set-cookie':
            continue
        value = header.get('value') or ''
        issues = [
            f"missing {flag}" for flag in ('HttpOnly', 'Secure')
            if flag.lower() not in value.lower()
        ]
        if issues:
            path, _ = _location(request.get('url', ''))
            cookie_name = value.split('=', 1)[0].strip() or 'unknown'
            findings.append(SecurityFinding(
                severity='LOW', category='Insecure Cookie', entry_index=index,
                method=request.get('method', ''), path=path,
                detail=f'Cookie "{cookie_name}": {", ".join(issues)}',
            ))
    return findings


def scan_sensitive_params(har_entry: dict, index: int) -> List[SecurityFinding]:
    request = har_entry.get('request') or {}
    path, params = _location(request.get('url', ''))
    return [
        SecurityFinding(
            severity='HIGH', category='Sensitive Data in URL', entry_index=index,
            method=request.get('method', ''), path=path,
            detail=f'Sensitive parameter "{name}" found in query string',
        )
        for name, _ in params if is_sensitive_param(name)
    ]


def scan_entries(raw_entries: list, now: Optional[float] = None) -> List[SecurityFinding]:
    """
    Run every check over the raw HAR entries.

    Args:
        raw_entries: log.entries of the HAR document
        now: Reference time (epoch seconds) for JWT expiry, default the current time

    Returns:
        Findings ordered by severity, then by entry
    """
    now = time.time() if now is None else now
    findings = []
    for index, har_entry in enumerate(raw_entries):
        if not isinstance(har_entry, dict):
            continue
        findings.extend(scan_jwt(har_entry, index, now))
        findings.extend(scan_api_keys(har_entry, index))
        findings.extend(scan_cookies(har_entry, index))
        findings.extend(scan_sensitive_params(har_entry, index))

    # Stable sort keeps the per-entry check order within a severity
    findings.sort(key=lambda f: (SEVERITY_ORDER.index(f.severity), f.entry_index))
    logger.debug(f"Security scan found {len(findings)} issues in {len(raw_entries)} entries")
    return findings
