"""
Conversation file discovery and metadata extraction.

Conversation logs live under ~/.claude/projects/{encoded-project-dir}/ as JSONL
files, one JSON object per line. Subagent transcripts sit in a subagents/
directory or are named agent-*.jsonl.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import ValidationError

from .config import HistoryConfig
from .models import FileStats, SessionMetadataRecord

logger = logging.getLogger(__name__)


# ============================================================================
# FILE DISCOVERY
# ============================================================================

def file_mtime_ms(path: Path) -> int:
    """Filesystem mtime in integer milliseconds (the cache invalidation key)."""
    return os.stat(path).st_mtime_ns // 1_000_000


def is_subagent_file(file_path: Path) -> bool:
    file_path = Path(file_path)
    return "subagents" in file_path.parent.parts or file_path.name.startswith("agent-")


def walk_jsonl_files(root: Path) -> List[Path]:
    """
    All *.jsonl files below root.

    Uses an explicit worklist so deep trees cannot exhaust the stack, and
    skips symlinked directories so cycles are not followed.
    """
    root = Path(root)
    found: List[Path] = []
    pending = [root]
    while pending:
        current = pending.pop()
        try:
            children = list(os.scandir(current))
        except OSError as e:
            logger.debug(f"Cannot scan {current}: {e}")
            continue
        for child in children:
            try:
                if child.is_dir(follow_symlinks=False):
                    pending.append(Path(child.path))
                elif child.name.endswith(".jsonl") and child.is_file():
                    found.append(Path(child.path))
            except OSError:
                continue
    return found


def _sort_by_mtime(files: List[Path]) -> List[Path]:
    stamped = []
    for f in files:
        try:
            stamped.append((file_mtime_ms(f), f))
        except OSError:
            continue
    stamped.sort(key=lambda item: item[0], reverse=True)
    return [f for _, f in stamped]


def find_conversation_files(
    projects_dir: Optional[Path] = None,
    project: Optional[str] = None,
    exclude_subagents: bool = False,
    agents_only: bool = False,
) -> List[Path]:
    """
    Find conversation files, most recently modified first.

    Args:
        projects_dir: Root of the project directories (default: HistoryConfig.PROJECTS_DIR)
        project: Only project directories whose name contains this text ("all" = no filter)
        exclude_subagents: Drop subagent transcripts
        agents_only: Keep only subagent transcripts

    Returns:
        Absolute file paths
    """
    projects_dir = Path(projects_dir) if projects_dir else HistoryConfig.PROJECTS_DIR
    if not projects_dir.is_dir():
        return []

    roots = [projects_dir]
    if project and project != "all":
        roots = [d for d in projects_dir.iterdir() if d.is_dir() and project in d.name]

    files: List[Path] = []
    for root in roots:
        files.extend(walk_jsonl_files(root))

    if exclude_subagents:
        files = [f for f in files if not is_subagent_file(f)]
    if agents_only:
        files = [f for f in files if is_subagent_file(f)]

    return _sort_by_mtime(files)


def find_conversation_files_in_dir(project_dir: Path, exclude_subagents: bool) -> List[Path]:
    """
    Conversation files of one project directory (no recursive walk).

    Top-level *.jsonl files, plus subagents/*.jsonl when subagents are included.
    """
    project_dir = Path(project_dir)
    try:
        files = [p for p in project_dir.iterdir() if p.name.endswith(".jsonl") and p.is_file()]
    except OSError:
        return []

    if not exclude_subagents:
        subagents_dir = project_dir / "subagents"
        if subagents_dir.is_dir():
            try:
                files.extend(p for p in subagents_dir.iterdir() if p.name.endswith(".jsonl") and p.is_file())
            except OSError:
                logger.debug(f"Cannot read {subagents_dir}")
    else:
        files = [f for f in files if not is_subagent_file(f)]

    return files


# ============================================================================
# PROJECT NAMES
# ============================================================================

def resolve_project_name_from_encoded(project_dir: str, home: Optional[Path] = None) -> str:
    """
    Resolve a project name from an encoded projects directory name.

    Directory names encode the working directory with "/" replaced by "-",
    which is ambiguous for names containing dashes. The original path is
    rebuilt by checking candidate directories on disk.

    Examples:
        "-Users-jane-Code-my-app" (with ~/Code/my-app on disk) → "my-app"
        "-srv-build-tools" (outside home) → "tools"
    """
    if not project_dir.startswith("-"):
        return project_dir

    home = Path(home) if home else Path.home()
    home_encoded = str(home).replace(os.sep, "-")
    if not project_dir.startswith(home_encoded + "-"):
        parts = project_dir.split("-")
        return parts[-1] or project_dir

    parts = project_dir[len(home_encoded) + 1:].split("-")
    resolved = home
    i = 0
    while i < len(parts):
        if (resolved / parts[i]).exists():
            resolved = resolved / parts[i]
            i += 1
            continue

        # The part may itself contain dashes: accumulate following parts
        accumulated = parts[i]
        found = False
        for j in range(i + 1, len(parts)):
            accumulated += f"-{parts[j]}"
            if (resolved / accumulated).exists():
                resolved = resolved / accumulated
                i = j + 1
                found = True
                break
        if not found:
            resolved = resolved / "-".join(parts[i:])
            break

    return resolved.name or project_dir


def extract_project_name(file_path: Path, projects_dir: Optional[Path] = None) -> str:
    """Project name of a conversation file, from its top-level project directory."""
    projects_dir = Path(projects_dir) if projects_dir else HistoryConfig.PROJECTS_DIR
    file_path = Path(file_path)
    try:
        project_dir = file_path.relative_to(projects_dir).parts[0]
    except (ValueError, IndexError):
        project_dir = file_path.parent.name
    return resolve_project_name_from_encoded(project_dir)


def resolve_project_dir(project: str, projects_dir: Optional[Path] = None,
                        cwd: Optional[Path] = None) -> Optional[Path]:
    """
    Resolve a project name (or path) to its exact project directory.

    Tries, in order: an existing directory path, the encoded current working
    directory when it names this project, then any directory named
    "<project>" or ending with "-<project>".
    """
    projects_dir = Path(projects_dir) if projects_dir else HistoryConfig.PROJECTS_DIR

    candidate = Path(project).expanduser()
    if candidate.is_absolute() and candidate.is_dir():
        return candidate

    cwd = Path(cwd) if cwd else Path.cwd()
    encoded_cwd = projects_dir / str(cwd).replace(os.sep, "-")
    if encoded_cwd.is_dir() and (cwd.name == project or encoded_cwd.name == project):
        return encoded_cwd

    if projects_dir.is_dir():
        for d in sorted(projects_dir.iterdir()):
            if d.is_dir() and (d.name == project or d.name.endswith(f"-{project}")):
                return d
    return None


# ============================================================================
# JSONL PARSING
# ============================================================================

def iter_jsonl(file_path: Path) -> Iterator[dict]:
    """Yield JSON objects from a JSONL file, skipping blank and invalid lines."""
    with open(file_path, "r", encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping invalid JSON at {file_path}:{line_number}")
                continue
            if isinstance(obj, dict):
                yield obj


def parse_jsonl_file(file_path: Path) -> List[dict]:
    return list(iter_jsonl(file_path))


def _str(value) -> Optional[str]:
    """The value if it is a non-empty string, else None."""
    return value if isinstance(value, str) and value else None


def _int(value) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def extract_user_text(obj: dict) -> str:
    """Text of a user message: string content or the first text block."""
    message = obj.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and _str(block.get("text")):
                return block["text"]
    return ""


def extract_session_metadata(
    file_path: Path,
    mtime: int,
    projects_dir: Optional[Path] = None,
) -> Optional[SessionMetadataRecord]:
    """
    Extract session metadata by reading a JSONL file.

    Captures summary and custom title (latest wins), sessionId, gitBranch, cwd
    and first timestamp (first wins), the first prompt, and user message text
    capped at HistoryConfig.USER_TEXT_CAP characters. Fields of the wrong type
    are ignored.

    Args:
        file_path: Conversation file
        mtime: File mtime (ms) to record with the metadata
        projects_dir: Root used to derive the project name

    Returns:
        SessionMetadataRecord, or None if the file is too large or unreadable
    """
    file_path = Path(file_path)
    try:
        if file_path.stat().st_size > HistoryConfig.MAX_FILE_SIZE:
            logger.info(f"Skipping oversized conversation file {file_path}")
            return None

        session_id = custom_title = summary = first_prompt = None
        git_branch = cwd = first_timestamp = None
        user_texts: List[str] = []
        user_text_len = 0
        cap = HistoryConfig.USER_TEXT_CAP

        for obj in iter_jsonl(file_path):
            kind = obj.get("type")
            if kind == "summary" and _str(obj.get("summary")):
                summary = obj["summary"]
            if kind == "custom-title" and _str(obj.get("customTitle")):
                custom_title = obj["customTitle"]
            session_id = session_id or _str(obj.get("sessionId"))
            git_branch = git_branch or _str(obj.get("gitBranch"))
            cwd = cwd or _str(obj.get("cwd"))
            first_timestamp = first_timestamp or _str(obj.get("timestamp"))

            if kind == "user" and user_text_len < cap:
                text = extract_user_text(obj)
                if text:
                    first_prompt = first_prompt or text
                    user_texts.append(text[:cap - user_text_len])
                    user_text_len += len(text)

            if (summary and custom_title and session_id and git_branch and cwd
                    and first_timestamp and user_text_len >= cap):
                break

        return SessionMetadataRecord(
            file_path=str(file_path),
            session_id=session_id or file_path.stem,
            custom_title=custom_title,
            summary=summary,
            first_prompt=first_prompt,
            git_branch=git_branch,
            project=extract_project_name(file_path, projects_dir),
            cwd=cwd,
            mtime=mtime,
            first_timestamp=first_timestamp,
            is_subagent=is_subagent_file(file_path),
            all_user_text=" ".join(user_texts) if user_texts else None,
        )
    except OSError as e:
        logger.warning(f"Cannot read conversation file {file_path}: {e}")
        return None
    except (ValidationError, TypeError, ValueError) as e:
        logger.warning(f"Skipping malformed conversation file {file_path}: {e}")
        return None


# ============================================================================
# PER-FILE STATISTICS
# ============================================================================

def extract_model_name(model_id: str) -> str:
    """Model family from a full model ID (claude-opus-4-5-20251101 → opus)."""
    for family in ("opus", "sonnet", "haiku"):
        if family in model_id:
            return family
    return "other"


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _bump(counts: Dict[str, int], key: str, amount: int = 1) -> None:
    counts[key] = counts.get(key, 0) + amount


def compute_file_stats(file_path: Path) -> FileStats:
    """
    Compute activity statistics for a single conversation file.

    Dates and hours are taken in UTC. Fields of the wrong type are ignored.
    """
    messages = parse_jsonl_file(file_path)
    stats = FileStats(
        messages=len(messages),
        subagent_sessions=1 if is_subagent_file(file_path) else 0,
    )

    for msg in messages:
        timestamp = parse_timestamp(msg["timestamp"]) if _str(msg.get("timestamp")) else None
        if timestamp is not None:
            date_str = timestamp.date().isoformat()
            _bump(stats.daily_activity, date_str)
            _bump(stats.hourly_activity, str(timestamp.hour))
            if stats.first_date is None or date_str < stats.first_date:
                stats.first_date = date_str
            if stats.last_date is None or date_str > stats.last_date:
                stats.last_date = date_str

        branch = _str(msg.get("gitBranch"))
        if branch:
            _bump(stats.branch_counts, branch)

        message = msg.get("message")
        if not isinstance(message, dict):
            continue

        content = message.get("content")
        if isinstance(content, list):
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_use" and _str(block.get("name")):
                    _bump(stats.tool_counts, block["name"])

        if msg.get("type") == "assistant":
            model = _str(message.get("model"))
            if model:
                _bump(stats.model_counts, extract_model_name(model))
            usage = message.get("usage")
            if isinstance(usage, dict):
                stats.token_usage.input_tokens += _int(usage.get("input_tokens"))
                stats.token_usage.output_tokens += _int(usage.get("output_tokens"))
                stats.token_usage.cache_create_tokens += _int(usage.get("cache_creation_input_tokens"))
                stats.token_usage.cache_read_tokens += _int(usage.get("cache_read_input_tokens"))

    return stats
