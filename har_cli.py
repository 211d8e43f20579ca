#!/usr/bin/env python3
"""
HAR Session Analyzer

Loads a HAR file once into a cached session and queries it across
invocations. Large bodies and header blocks are printed in full the first
time and referenced ([ref:e14.rs.body]) afterwards.

Usage:
    python har_cli.py load capture.har
    python har_cli.py list --status 4xx --domain "*.example.com"
    python har_cli.py show e14 --raw --section body
    python har_cli.py expand e14.rs.body
    python har_cli.py diff e3 e7
    python har_cli.py security
    python har_cli.py export --sanitize --output subset.har
"""

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from har_analyzer.exceptions import (
    EntryNotFoundError,
    HarAnalyzerError,
    InvalidEntryReferenceError,
    InvalidFilterError,
)
from har_analyzer.cookies import analyze_cookies, collapse_entry_ranges
from har_analyzer.diff import diff_headers, diff_properties
from har_analyzer.export import export_har
from har_analyzer.filters import filter_entries, group_by_domain, parse_entry_index
from har_analyzer.models import EntryFilter, HarSession, IndexedEntry
from har_analyzer.parser import (
    extract_content,
    extract_domain_and_path,
    format_bytes,
    format_duration,
    format_headers,
    is_interesting_mime_type,
    load_har_file,
    truncate_path,
)
from har_analyzer.ref_store import RefStoreManager
from har_analyzer.search import SEARCH_SCOPES, search_entries
from har_analyzer.security import SEVERITY_ORDER, SEVERITY_SYMBOLS, scan_entries
from har_analyzer.session_manager import SessionManager


logger = logging.getLogger(__name__)

REF_ID_PATTERN = re.compile(r'^e(\d+)\.(rq\.headers|rs\.headers|rq\.body|rs\.body)$')


# ============================================================================
# OUTPUT HELPERS
# ============================================================================

def setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def emit(args, text: str, data=None) -> None:
    """Print text, or data as JSON when --format json is set."""
    if args.format == 'json':
        print(json.dumps(data if data is not None else {'output': text}, indent=2, ensure_ascii=False))
    else:
        print(text)


def entry_line(entry: IndexedEntry) -> str:
    return (
        f"e{entry.index:<4} {entry.method:<7} {entry.status:<4} "
        f"{format_bytes(entry.response_size):>9} {format_duration(entry.time_ms):>8}  "
        f"{entry.domain}{truncate_path(entry.path)}"
    )


def build_filter(args) -> EntryFilter:
    """
    Collect filter options from the command line.

    Raises:
        InvalidFilterError: If a numeric bound is negative
    """
    for name in ('min_time', 'min_size', 'limit'):
        value = getattr(args, name, None)
        if value is not None and value < 0:
            raise InvalidFilterError(f"--{name.replace('_', '-')} must not be negative (got {value})")

    return EntryFilter(
        domain=getattr(args, 'domain', None),
        url=getattr(args, 'url', None),
        status=getattr(args, 'status', None),
        method=getattr(args, 'method', None),
        type=getattr(args, 'type', None),
        min_time=getattr(args, 'min_time', None),
        min_size=getattr(args, 'min_size', None),
        limit=getattr(args, 'limit', None),
    )


def require_entry(session: HarSession, reference: str) -> IndexedEntry:
    index = parse_entry_index(reference)
    entry = session.get_entry(index)
    if entry is None:
        raise EntryNotFoundError(index, session.stats.entry_count)
    return entry


def load_raw_entry(session: HarSession, index: int) -> dict:
    """Raw HAR entry of a session, read from the source file."""
    raw_entries = load_har_file(Path(session.source_file))['log']['entries']
    if index >= len(raw_entries) or not isinstance(raw_entries[index], dict):
        raise EntryNotFoundError(index, session.stats.entry_count)
    return raw_entries[index]


# ============================================================================
# COMMANDS
# ============================================================================

def cmd_load(args, manager: SessionManager) -> int:
    session = manager.create_session(Path(args.file))
    expired = manager.clean_expired_sessions()
    if expired:
        logger.info(f"Cleaned {expired} expired sessions")

    stats = session.stats
    lines = [
        "=" * 70,
        f"HAR SESSION {session.source_hash}",
        "=" * 70,
        f"File: {session.source_file}",
        f"Entries: {stats.entry_count}   Domains: {len(stats.domains)}   Errors: {stats.error_count}",
        f"Total size: {format_bytes(stats.total_size_bytes)}   Total time: {format_duration(stats.total_time_ms)}",
    ]
    if stats.status_distribution:
        buckets = '  '.join(f"{bucket}: {count}" for bucket, count in sorted(stats.status_distribution.items()))
        lines.append(f"Status: {buckets}")
    if stats.domains:
        lines.append("Top domains:")
        top = sorted(stats.domains.items(), key=lambda item: item[1], reverse=True)[:5]
        for domain, count in top:
            lines.append(f"  {domain:<40} {count:>5}")
    lines.append("=" * 70)

    emit(args, '\n'.join(lines), {
        'source_hash': session.source_hash,
        'source_file': session.source_file,
        'stats': stats.model_dump(),
    })
    return 0


def cmd_list(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    entries = filter_entries(session.entries, build_filter(args))

    lines = [entry_line(e) for e in entries]
    lines.append(f"\n{len(entries)} of {session.stats.entry_count} entries")
    emit(args, '\n'.join(lines), [e.model_dump() for e in entries])
    return 0


def render_detail(entry: IndexedEntry, har_entry: dict, refs: RefStoreManager) -> str:
    request = har_entry.get('request') or {}
    response = har_entry.get('response') or {}
    lines = [
        f"{entry.method} {entry.url}",
        f"Status: {entry.status} {entry.status_text}",
        "",
        "Timing:",
    ]
    for label, value in (har_entry.get('timings') or {}).items():
        if isinstance(value, (int, float)) and value >= 0:
            lines.append(f"  {label:<10} {format_duration(value)}")
    lines.append(f"  {'total':<10} {format_duration(entry.time_ms)}")
    lines.append("")

    for title, headers in (("Request Headers", request.get('headers') or []),
                           ("Response Headers", response.get('headers') or [])):
        lines.append(f"{title}: {len(headers)} total")
        for header in headers[:5]:
            lines.append(f"  {header.get('name', '')}: {header.get('value', '')}")
        if len(headers) > 5:
            lines.append(f"  ... +{len(headers) - 5} more")
        lines.append("")

    query = request.get('queryString') or []
    if query:
        lines.append(f"Query Parameters: {len(query)}")
        for param in query:
            lines.append(f"  {param.get('name', '')}={param.get('value', '')}")
        lines.append("")

    if entry.has_request_body:
        lines.append(f"Request Body: {format_bytes(entry.request_size)} ({entry.request_body_mime_type})")
    else:
        lines.append("Request Body: none")
    stored = refs.get(f"e{entry.index}.rq.body")
    if stored:
        lines.append(f"  {refs.render_reference(stored)}")

    lines.append(f"Response Body: {format_bytes(entry.response_size)} ({entry.mime_type})")
    stored = refs.get(f"e{entry.index}.rs.body")
    if stored:
        lines.append(f"  {refs.render_reference(stored)}")

    return '\n'.join(lines)


def render_response_body(index: int, har_entry: dict, refs: RefStoreManager,
                         full: bool = False, include_all: bool = False) -> str:
    content = (har_entry.get('response') or {}).get('content') or {}
    if content.get('encoding') == 'base64':
        return f"[binary: {content.get('mimeType', '')}, {format_bytes(content.get('size'))}]"
    if not content.get('text'):
        return "(empty)"
    mime = content.get('mimeType', '')
    if is_interesting_mime_type(mime) or include_all:
        return refs.format_value(content['text'], f"e{index}.rs.body", full=full)
    return f"[skipped: {mime}, {format_bytes(content.get('size'))}]"


def render_raw(entry: IndexedEntry, har_entry: dict, refs: RefStoreManager,
               section: str = None, full: bool = False, include_all: bool = False) -> dict:
    """Raw sections of an entry, large values routed through the reference store."""
    index = entry.index
    request = har_entry.get('request') or {}
    response = har_entry.get('response') or {}
    sections = {}

    if section in (None, 'headers'):
        sections['Request Headers'] = refs.format_value(
            format_headers(request.get('headers')), f"e{index}.rq.headers", full=full)
        sections['Response Headers'] = refs.format_value(
            format_headers(response.get('headers')), f"e{index}.rs.headers", full=full)

    if section == 'cookies':
        sections['Request Cookies'] = '\n'.join(
            f"  {c.get('name', '')}={c.get('value', '')}" for c in request.get('cookies') or []
        ) or "  (none)"
        cookie_lines = []
        for cookie in response.get('cookies') or []:
            parts = [f"{cookie.get('name', '')}={cookie.get('value', '')}"]
            if cookie.get('domain'):
                parts.append(f"Domain={cookie['domain']}")
            if cookie.get('path'):
                parts.append(f"Path={cookie['path']}")
            if cookie.get('httpOnly'):
                parts.append("HttpOnly")
            if cookie.get('secure'):
                parts.append("Secure")
            cookie_lines.append(f"  {'; '.join(parts)}")
        sections['Response Cookies'] = '\n'.join(cookie_lines) or "  (none)"

    if section in (None, 'body'):
        post_data = request.get('postData') or {}
        if post_data.get('text'):
            mime = post_data.get('mimeType', '')
            if is_interesting_mime_type(mime) or include_all:
                sections['Request Body'] = refs.format_value(post_data['text'], f"e{index}.rq.body", full=full)
            else:
                sections['Request Body'] = f"[skipped: {mime}, {format_bytes(entry.request_size)}]"
        else:
            sections['Request Body'] = "(none)"

        sections['Response Body'] = render_response_body(index, har_entry, refs, full=full, include_all=include_all)

    return sections


def cmd_show(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    entry = require_entry(session, args.entry)
    har_entry = load_raw_entry(session, entry.index)
    refs = manager.ref_store(session)

    if args.raw:
        sections = render_raw(entry, har_entry, refs, section=args.section,
                              full=args.full, include_all=args.include_all)
        text = '\n\n'.join(f"=== {title} ===\n{body}" for title, body in sections.items())
        emit(args, text, {'entry': f"e{entry.index}", 'sections': sections})
    else:
        emit(args, render_detail(entry, har_entry, refs), entry.model_dump())
    return 0


def cmd_expand(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    ref_id = args.ref_id.strip()
    if ref_id.startswith('[ref:') and ref_id.endswith(']'):
        ref_id = ref_id[5:-1]

    value = manager.ref_store(session).expand(ref_id)
    if value is None:
        match = REF_ID_PATTERN.match(ref_id)
        if not match:
            raise InvalidEntryReferenceError(
                f'Invalid refId format: "{ref_id}". Expected format like "e14.rs.body".'
            )
        entry = require_entry(session, match.group(1))
        value = extract_content(load_raw_entry(session, entry.index), match.group(2))
        if value is None:
            raise HarAnalyzerError(f'No content found for ref "{ref_id}".')

    emit(args, value, {'ref': ref_id, 'value': value})
    return 0


def cmd_search(args, manager: SessionManager) -> int:
    if not args.query.strip():
        raise InvalidFilterError('Search query must not be empty')

    session = manager.require_session(args.session)
    entries = filter_entries(session.entries, EntryFilter(domain=args.domain))

    raw_entries = None
    if args.scope != 'url':
        raw_entries = load_har_file(Path(session.source_file))['log']['entries']

    matches = search_entries(entries, raw_entries, args.query, scope=args.scope, limit=args.limit)
    if not matches:
        emit(args, f'No matches found for "{args.query}" in scope "{args.scope}".', [])
        return 0

    lines = [
        f"[e{m.entry.index}] {m.entry.method} {truncate_path(m.entry.path, 40)} {m.entry.status} -> {m.context}"
        for m in matches
    ]
    lines.append(f"\n{len(matches)} matches found")
    emit(args, '\n'.join(lines), [m.model_dump() for m in matches])
    return 0


def cmd_domains(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)

    rows = []
    for domain, entries in group_by_domain(session.entries).items():
        total_time = sum(e.time_ms for e in entries)
        rows.append({
            'domain': domain,
            'count': len(entries),
            'total_size': sum(e.response_size for e in entries),
            'avg_time_ms': total_time / len(entries) if entries else 0,
        })
    rows.sort(key=lambda row: row['count'], reverse=True)

    lines = [f"{'Domain':<40} {'Count':>6} {'Total Size':>11} {'Avg Time':>9}"]
    for row in rows:
        lines.append(
            f"{row['domain']:<40} {row['count']:>6} "
            f"{format_bytes(row['total_size']):>11} {format_duration(row['avg_time_ms']):>9}"
        )
    lines.append(f"\n{len(rows)} domains")
    emit(args, '\n'.join(lines), rows)
    return 0


def cmd_domain(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    entry_filter = build_filter(args)
    entry_filter.domain = args.name
    entries = filter_entries(session.entries, entry_filter)
    if not entries:
        emit(args, f'No entries found for domain "{args.name}".', [])
        return 0

    raw_entries = load_har_file(Path(session.source_file))['log']['entries']
    refs = manager.ref_store(session)

    rows = []
    lines = []
    for entry in entries:
        body = render_response_body(entry.index, raw_entries[entry.index], refs,
                                    full=args.full, include_all=args.include_all)
        rows.append({**entry.model_dump(), 'body': body})
        lines.append(f"e{entry.index:<4} {entry.method:<7} {truncate_path(entry.path, 50):<50} {entry.status:<4} {body}")
    lines.append(f"\n{len(entries)} entries for {args.name}")
    emit(args, '\n'.join(lines), rows)
    return 0


def cmd_diff(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    first = require_entry(session, args.entry1)
    second = require_entry(session, args.entry2)
    raw_first = load_raw_entry(session, first.index)
    raw_second = load_raw_entry(session, second.index)
    refs = manager.ref_store(session)

    properties = diff_properties(first, second)
    headers = diff_headers(raw_first, raw_second)
    bodies = {
        f"e{first.index}": render_response_body(first.index, raw_first, refs,
                                                full=args.full, include_all=args.include_all),
        f"e{second.index}": render_response_body(second.index, raw_second, refs,
                                                 full=args.full, include_all=args.include_all),
    }

    col = 30
    lines = [
        f"Diff: e{first.index} vs e{second.index}",
        "",
        f"  {'Property':<16} {f'e{first.index}':<{col}} e{second.index}",
        f"  {'-' * 16} {'-' * col} {'-' * col}",
    ]
    for label, a, b in properties:
        marker = '* ' if a != b else '  '
        lines.append(f"{marker}{label:<16} {truncate_path(a, col):<{col}} {truncate_path(b, col)}")
    lines.append("")

    if headers:
        lines.append("Headers (different only):")
        for h in headers:
            a = truncate_path(h.first if h.first is not None else '(absent)', col)
            b = truncate_path(h.second if h.second is not None else '(absent)', col)
            lines.append(f"  {h.scope} {h.name:<20} {a:<{col}} {b}")
        lines.append("")

    lines.append("Body:")
    for label, body in bodies.items():
        lines.append(f"  {label}: {body}")

    emit(args, '\n'.join(lines), {
        'entries': [f"e{first.index}", f"e{second.index}"],
        'properties': [{'property': label, 'first': a, 'second': b, 'differs': a != b}
                       for label, a, b in properties],
        'headers': [h.model_dump() for h in headers],
        'bodies': bodies,
    })
    return 0


def cmd_cookies(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    cookies = analyze_cookies(load_har_file(Path(session.source_file))['log']['entries'])
    if not cookies:
        emit(args, "No cookies found in HAR file.", [])
        return 0

    lines = [f"{len(cookies)} cookie{'s' if len(cookies) != 1 else ''} found:", ""]
    for cookie in cookies:
        lines.append(f"  {cookie.name}")
        if cookie.set_by_entry is not None:
            _, path = extract_domain_and_path(cookie.set_by_url)
            lines.append(f"    Set by: e{cookie.set_by_entry} {truncate_path(path, 40)}")
        else:
            lines.append(f"    Set by: {cookie.set_by_url}")
        if cookie.flags:
            lines.append(f"    Flags:  {', '.join(cookie.flags)}")
        sent = len(cookie.sent_in_entries)
        lines.append(f"    Sent in {sent} request{'s' if sent != 1 else ''}: "
                     f"{collapse_entry_ranges(cookie.sent_in_entries)}")
        lines.append("")
    emit(args, '\n'.join(lines).rstrip(), [c.model_dump() for c in cookies])
    return 0


def cmd_security(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    findings = scan_entries(load_har_file(Path(session.source_file))['log']['entries'])
    if not findings:
        emit(args, "No security issues detected.", [])
        return 0

    lines = [f"Security Scan: {len(findings)} finding(s)", ""]
    for severity in SEVERITY_ORDER:
        group = [f for f in findings if f.severity == severity]
        if not group:
            continue
        lines.append(f"-- {SEVERITY_SYMBOLS[severity]} {severity} ({len(group)}) --")
        for finding in group:
            lines.append(f"  e{finding.entry_index}  {finding.method}  {finding.path}")
            lines.append(f"       {finding.category}: {finding.detail}")
        lines.append("")
    emit(args, '\n'.join(lines).rstrip(), [f.model_dump() for f in findings])
    return 0


def cmd_export(args, manager: SessionManager) -> int:
    session = manager.require_session(args.session)
    entries = filter_entries(session.entries, build_filter(args))
    har_data = load_har_file(Path(session.source_file))
    exported = export_har(har_data, entries, sanitize=args.sanitize, strip_bodies=args.strip_bodies)
    text = json.dumps(exported, indent=2, ensure_ascii=False)

    if args.output:
        output_path = Path(args.output)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(text)
        print(f"Exported {len(exported['log']['entries'])} entries to {output_path}")
    else:
        print(text)
    return 0


def cmd_sessions(args, manager: SessionManager) -> int:
    if args.clean:
        removed = manager.clean_expired_sessions()
        print(f"Removed {removed} expired sessions")

    infos = manager.list_sessions()
    if not infos:
        emit(args, "No sessions.", [])
        return 0

    lines = []
    for info in infos:
        marker = '*' if info.is_current else ' '
        lines.append(f"{marker} {info.source_hash}  {info.entry_count:>6} entries  {info.source_file}")
    emit(args, '\n'.join(lines), [info.model_dump() for info in infos])
    return 0


COMMANDS = {
    'load': cmd_load,
    'list': cmd_list,
    'show': cmd_show,
    'expand': cmd_expand,
    'search': cmd_search,
    'domains': cmd_domains,
    'domain': cmd_domain,
    'diff': cmd_diff,
    'cookies': cmd_cookies,
    'security': cmd_security,
    'export': cmd_export,
    'sessions': cmd_sessions,
}


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--domain', type=str, help='Domain glob (e.g. "*.example.com")')
    parser.add_argument('--url', type=str, help='URL glob')
    parser.add_argument('--status', type=str, help='Status code, class or negation (200, 4xx, !3xx)')
    parser.add_argument('--method', type=str, help='Comma-separated HTTP methods (e.g. "GET,POST")')
    parser.add_argument('--type', type=str, help='MIME type glob (e.g. "*json*")')
    parser.add_argument('--min-time', type=float, help='Minimum total time in ms')
    parser.add_argument('--min-size', type=int, help='Minimum response size in bytes')
    parser.add_argument('--limit', type=int, help='Maximum entries')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Analyze HAR files through cached sessions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python har_cli.py load capture.har
  python har_cli.py list --status '!2xx' --method GET,POST
  python har_cli.py show e14 --raw
  python har_cli.py expand e14.rs.body
        """
    )
    parser.add_argument('--session', type=str, default=None, help='Session hash (default: last loaded)')
    parser.add_argument('--full', action='store_true', help='Print large values in full, bypassing references')
    parser.add_argument('--include-all', action='store_true', help='Include bodies of static assets')
    parser.add_argument('--format', choices=['text', 'json'], default='text', help='Output format (default: text)')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='More logging (-v info, -vv debug)')

    sub = parser.add_subparsers(dest='command', required=True)

    load = sub.add_parser('load', help='Load a HAR file into a session')
    load.add_argument('file', type=str, help='Path to the HAR file')

    list_cmd = sub.add_parser('list', help='List entries')
    add_filter_arguments(list_cmd)

    show = sub.add_parser('show', help='Show entry detail, or raw content with --raw')
    show.add_argument('entry', type=str, help='Entry reference (e14 or 14)')
    show.add_argument('--raw', action='store_true', help='Show full headers and bodies')
    show.add_argument('--section', choices=['body', 'headers', 'cookies'], help='Raw section to show')

    expand = sub.add_parser('expand', help='Print the full value of a reference')
    expand.add_argument('ref_id', type=str, help='Reference ID (e.g. e14.rs.body)')

    search = sub.add_parser('search', help='Search URLs, bodies and headers')
    search.add_argument('query', type=str, help='Text to search for')
    search.add_argument('--scope', choices=list(SEARCH_SCOPES), default='all', help='Where to search (default: all)')
    search.add_argument('--domain', type=str, help='Domain glob')
    search.add_argument('--limit', type=int, default=20, help='Maximum matches (default: 20)')

    sub.add_parser('domains', help='Request count, size and time per domain')

    domain = sub.add_parser('domain', help='Entries of one domain with body previews')
    domain.add_argument('name', type=str, help='Domain name or glob')
    domain.add_argument('--status', type=str, help='Status code, class or negation (200, 4xx, !3xx)')
    domain.add_argument('--method', type=str, help='Comma-separated HTTP methods')
    domain.add_argument('--limit', type=int, help='Maximum entries')

    diff = sub.add_parser('diff', help='Compare two entries side by side')
    diff.add_argument('entry1', type=str, help='First entry reference (e14 or 14)')
    diff.add_argument('entry2', type=str, help='Second entry reference')

    sub.add_parser('cookies', help='Track where cookies are set and sent')
    sub.add_parser('security', help='Scan for exposed tokens, keys and insecure cookies')

    export = sub.add_parser('export', help='Export a filtered HAR subset')
    add_filter_arguments(export)
    export.add_argument('--sanitize', action='store_true', help='Redact credentials, cookies and tokens')
    export.add_argument('--strip-bodies', action='store_true', help='Remove request and response bodies')
    export.add_argument('-o', '--output', type=str, help='Output file (default: stdout)')

    sessions = sub.add_parser('sessions', help='List cached sessions')
    sessions.add_argument('--clean', action='store_true', help='Delete expired sessions first')

    return parser


# ============================================================================
# MAIN
# ============================================================================

def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    manager = SessionManager()
    try:
        return COMMANDS[args.command](args, manager)
    except (HarAnalyzerError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
