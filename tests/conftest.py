"""
tests/conftest.py

Shared fixtures: HAR file builders, an isolated analyzer home and a fake
conversation projects directory.
"""

import json
import os
from pathlib import Path

import pytest

from har_analyzer.config import AnalyzerConfig
from har_analyzer.parser import index_har_entries


def make_har_entry(
    url: str = "https://api.example.com/v1/items",
    method: str = "GET",
    status: int = 200,
    mime_type: str = "application/json",
    body: str = '{"ok": true}',
    time_ms: float = 120.0,
    request_body: str = None,
    request_headers: list = None,
    response_headers: list = None,
) -> dict:
    """Minimal but complete HAR 1.2 entry."""
    request = {
        "method": method,
        "url": url,
        "httpVersion": "HTTP/1.1",
        "headers": request_headers if request_headers is not None else [
            {"name": "Accept", "value": "application/json"},
        ],
        "queryString": [],
        "cookies": [],
        "headersSize": -1,
        "bodySize": len(request_body) if request_body else 0,
    }
    if request_body is not None:
        request["postData"] = {"mimeType": "application/json", "text": request_body}

    return {
        "startedDateTime": "2025-01-15T10:00:00.000Z",
        "time": time_ms,
        "request": request,
        "response": {
            "status": status,
            "statusText": "",
            "httpVersion": "HTTP/1.1",
            "headers": response_headers if response_headers is not None else [
                {"name": "Content-Type", "value": mime_type},
            ],
            "cookies": [],
            "content": {"size": len(body), "mimeType": mime_type, "text": body},
            "redirectURL": "",
            "headersSize": -1,
            "bodySize": len(body),
        },
        "cache": {},
        "timings": {"send": 1, "wait": time_ms - 2, "receive": 1},
    }


def make_har(entries: list) -> dict:
    return {"log": {"version": "1.2", "creator": {"name": "test", "version": "1"}, "entries": entries}}


@pytest.fixture
def write_har(tmp_path: Path):
    """Write a HAR document built from entries and return its path."""
    def _write(entries: list, name: str = "capture.har") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(make_har(entries)), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def sample_entries():
    """Five indexed entries across two domains."""
    raw = [
        make_har_entry("https://api.example.com/v1/users", "GET", 200, time_ms=50),
        make_har_entry("https://api.example.com/v1/users", "POST", 201, time_ms=300, request_body='{"n": 1}'),
        make_har_entry("https://cdn.example.org/app.js", "GET", 304, mime_type="application/javascript",
                       body="x" * 5000, time_ms=10),
        make_har_entry("https://api.example.com/v1/missing", "GET", 404, time_ms=80),
        make_har_entry("https://api.example.com/v1/crash", "DELETE", 500, body="", time_ms=1500),
    ]
    return index_har_entries(raw)


@pytest.fixture
def analyzer_home(tmp_path: Path, monkeypatch) -> Path:
    """Analyzer home directory isolated per test."""
    home = tmp_path / "har-home"
    monkeypatch.setattr(AnalyzerConfig, "HOME_DIR", home)
    return home


# ============================================================================
# CONVERSATION FIXTURES
# ============================================================================

def conversation_lines(session_id: str, prompt: str, timestamp: str = "2025-01-15T10:00:00.000Z",
                       summary: str = None, branch: str = "main", model: str = "claude-sonnet-4-5") -> list:
    lines = []
    if summary:
        lines.append({"type": "summary", "summary": summary})
    lines.append({
        "type": "user",
        "sessionId": session_id,
        "gitBranch": branch,
        "cwd": "/work/project",
        "timestamp": timestamp,
        "message": {"role": "user", "content": prompt},
    })
    lines.append({
        "type": "assistant",
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": {
            "role": "assistant",
            "model": model,
            "content": [
                {"type": "text", "text": "On it."},
                {"type": "tool_use", "name": "Read", "input": {}},
            ],
            "usage": {"input_tokens": 10, "output_tokens": 5},
        },
    })
    return lines


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    d = tmp_path / "projects"
    d.mkdir()
    return d


@pytest.fixture
def write_conversation(projects_dir: Path):
    """Write a JSONL conversation file under projects_dir/<project_dir>/."""
    counter = {"mtime": 1_700_000_000}

    def _write(project_dir: str, name: str, lines: list) -> Path:
        path = projects_dir / project_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
        # Distinct, deterministic mtimes
        counter["mtime"] += 10
        os.utime(path, (counter["mtime"], counter["mtime"]))
        return path

    return _write
