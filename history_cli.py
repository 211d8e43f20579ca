#!/usr/bin/env python3
"""
Conversation History Browser

Lists, searches and summarizes conversation logs under ~/.claude/projects,
answering from an incrementally maintained SQLite cache.

Usage:
    python history_cli.py list --project my-app --limit 20
    python history_cli.py search "flaky test"
    python history_cli.py stats --from 2025-01-01
    python history_cli.py cache --info
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from history_cache.database import CacheDatabase
from history_cache.listing import SessionListingOptions, get_session_listing, search_sessions
from history_cache.models import SessionMetadataRecord
from history_cache.stats import get_conversation_stats_with_cache


logger = logging.getLogger(__name__)


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


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def session_title(record: SessionMetadataRecord, max_length: int = 70) -> str:
    title = record.custom_title or record.summary or record.first_prompt or "(untitled)"
    title = ' '.join(title.split())
    return title if len(title) <= max_length else title[:max_length - 3] + '...'


def session_line(record: SessionMetadataRecord) -> str:
    when = (record.first_timestamp or '')[:16].replace('T', ' ')
    branch = f" [{record.git_branch}]" if record.git_branch else ''
    marker = ' (agent)' if record.is_subagent else ''
    return f"{when:<16}  {record.project or '-':<24} {session_title(record)}{branch}{marker}"


def progress_printer(verbose: int):
    if not verbose:
        return None

    def report(processed: int, total: int, current) -> None:
        logger.info(f"Indexed {processed}/{total}: {current}")

    return report


# ============================================================================
# COMMANDS
# ============================================================================

def cmd_list(args, cache: CacheDatabase) -> int:
    options = SessionListingOptions(
        project=args.project,
        exclude_subagents=not args.include_subagents,
        limit=args.limit,
    )
    result = get_session_listing(options, cache=cache, projects_dir=args.projects_dir,
                                 on_progress=progress_printer(args.verbose))

    if args.format == 'json':
        print_json(result.model_dump())
        return 0

    for record in result.sessions:
        print(session_line(record))
    print(
        f"\n{len(result.sessions)} shown, {result.total} sessions in {result.scope} "
        f"({result.subagents} subagents, {result.project_count} projects)"
    )
    if result.reindexed:
        print("Cache format changed: re-indexed all sessions")
    logger.info(f"Indexed {result.indexed} files, removed {result.stale_removed} stale rows")
    return 0


def cmd_search(args, cache: CacheDatabase) -> int:
    results = search_sessions(
        args.query,
        cache=cache,
        projects_dir=args.projects_dir,
        project=args.project,
        include_subagents=args.include_subagents,
        limit=args.limit,
    )

    if args.format == 'json':
        print_json([r.model_dump() for r in results])
        return 0

    if not results:
        print(f'No sessions match "{args.query}".')
        return 0
    for result in results:
        print(f"{result.relevance_score:>5.1f}  {session_line(result.session)}")
        print(f"       {result.session.file_path}")
    print(f"\n{len(results)} matches")
    return 0


def cmd_stats(args, cache: CacheDatabase) -> int:
    stats = get_conversation_stats_with_cache(
        cache=cache,
        projects_dir=args.projects_dir,
        force_refresh=args.refresh,
        date_from=args.date_from,
        date_to=args.date_to,
        on_progress=progress_printer(args.verbose),
    )

    if args.format == 'json':
        print_json(stats.model_dump())
        return 0

    usage = stats.token_usage
    print("=" * 70)
    print("CONVERSATION STATISTICS")
    print("=" * 70)
    print(f"Conversations: {stats.total_conversations}   Messages: {stats.total_messages}   "
          f"Subagents: {stats.subagent_count}")
    print(f"Projects: {len(stats.project_counts)}   Active days: {len(stats.daily_activity)}")
    print(f"Tokens: in {usage.input_tokens:,}  out {usage.output_tokens:,}  "
          f"cache write {usage.cache_create_tokens:,}  cache read {usage.cache_read_tokens:,}")

    for title, counts in (("Top tools", stats.tool_counts),
                          ("Models", stats.model_counts),
                          ("Top projects", stats.project_counts)):
        if not counts:
            continue
        print(f"\n{title}:")
        for name, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)[:10]:
            print(f"  {name:<40} {count:>8}")
    print("=" * 70)
    return 0


def cmd_cache(args, cache: CacheDatabase) -> int:
    if args.clear:
        cache.reset()
        print(f"Cleared cache at {cache.db_path}")
        return 0

    info = cache.cache_stats()
    if args.format == 'json':
        print_json(info)
        return 0
    for key, value in info.items():
        print(f"{key:<18} {value}")
    return 0


COMMANDS = {
    'list': cmd_list,
    'search': cmd_search,
    'stats': cmd_stats,
    'cache': cmd_cache,
}


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Browse conversation history through an incremental metadata cache',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python history_cli.py list --limit 10
  python history_cli.py search "database migration" --project my-app
  python history_cli.py stats --refresh
        """
    )
    parser.add_argument('--projects-dir', type=Path, default=None, help='Conversation projects directory')
    parser.add_argument('--cache-dir', type=Path, default=None, help='Directory of the cache database')
    parser.add_argument('--format', choices=['text', 'json'], default='text', help='Output format (default: text)')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='More logging (-v info, -vv debug)')

    sub = parser.add_subparsers(dest='command', required=True)

    list_cmd = sub.add_parser('list', help='List sessions, newest first')
    list_cmd.add_argument('--project', type=str, help='Project name or directory')
    list_cmd.add_argument('--include-subagents', action='store_true', help='Include subagent transcripts')
    list_cmd.add_argument('--limit', type=int, default=None, help='Maximum sessions')

    search = sub.add_parser('search', help='Search titles, summaries and prompts')
    search.add_argument('query', type=str, help='Words that must all match')
    search.add_argument('--project', type=str, help='Project name or directory')
    search.add_argument('--include-subagents', action='store_true', help='Include subagent transcripts')
    search.add_argument('--limit', type=int, default=20, help='Maximum matches (default: 20)')

    stats = sub.add_parser('stats', help='Conversation statistics')
    stats.add_argument('--from', dest='date_from', type=str, help='First day (YYYY-MM-DD)')
    stats.add_argument('--to', dest='date_to', type=str, help='Last day (YYYY-MM-DD)')
    stats.add_argument('--refresh', action='store_true', help='Rebuild statistics from scratch')

    cache = sub.add_parser('cache', help='Inspect or clear the cache')
    cache.add_argument('--info', action='store_true', help='Show cache details (default)')
    cache.add_argument('--clear', action='store_true', help='Delete all cached rows')

    return parser


# ============================================================================
# MAIN
# ============================================================================

def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        with CacheDatabase(cache_dir=args.cache_dir) as cache:
            return COMMANDS[args.command](args, cache)
    except KeyboardInterrupt:
        logger.warning("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
