"""
End-to-end tests for the HAR analyzer CLI.
"""

import json

import pytest

import har_cli
from conftest import make_har_entry

BIG_BODY = '{"data": "' + "x" * 4988 + '"}'


@pytest.fixture
def har_path(write_har):
    assert len(BIG_BODY) == 5000
    return write_har([
        make_har_entry("https://api.example.com/v1/ok", status=200),
        make_har_entry("https://api.example.com/v1/missing", status=404, body=BIG_BODY,
                       request_headers=[{"name": "Authorization", "value": "Bearer secret"}]),
        make_har_entry("https://errors.example.net/boom?token=abc&page=2", status=500, body="boom"),
    ])


@pytest.fixture
def loaded(analyzer_home, har_path, capsys):
    assert har_cli.main(["load", str(har_path)]) == 0
    capsys.readouterr()
    return har_path


def run_json(capsys, *argv):
    code = har_cli.main(["--format", "json", *argv])
    assert code == 0
    return json.loads(capsys.readouterr().out)


def test_commands_require_session(analyzer_home, capsys):
    assert har_cli.main(["list"]) == 1
    assert "No session loaded. Use `load <file>` first." in capsys.readouterr().err


def test_load_prints_dashboard(analyzer_home, har_path, capsys):
    assert har_cli.main(["load", str(har_path)]) == 0
    out = capsys.readouterr().out
    assert "Entries: 3" in out
    assert "api.example.com" in out


def test_list_status_filters(loaded, capsys):
    assert [e["index"] for e in run_json(capsys, "list", "--status", "4xx")] == [1]
    assert [e["index"] for e in run_json(capsys, "list", "--status", "!2xx")] == [1, 2]


def test_list_text_output(loaded, capsys):
    assert har_cli.main(["list", "--domain", "errors.*"]) == 0
    out = capsys.readouterr().out
    assert "e2 " in out
    assert "e0 " not in out
    assert "1 of 3 entries" in out


def test_show_raw_stores_reference_then_previews(loaded, analyzer_home, capsys):
    assert har_cli.main(["show", "e1", "--raw"]) == 0
    first = capsys.readouterr().out
    assert BIG_BODY in first
    assert "[ref:e1.rs.body]" in first

    refs_files = list((analyzer_home / "refs").glob("*.json"))
    assert len(refs_files) == 1
    assert "e1.rs.body" in json.loads(refs_files[0].read_text(encoding="utf-8"))["refs"]

    assert har_cli.main(["show", "e1"]) == 0
    detail = capsys.readouterr().out
    assert BIG_BODY not in detail
    assert BIG_BODY[:80] + "... [ref:e1.rs.body]" in detail

    assert har_cli.main(["show", "1", "--raw", "--section", "body"]) == 0
    again = capsys.readouterr().out
    assert BIG_BODY not in again
    assert "[ref:e1.rs.body]" in again


def test_show_full_bypasses_references(loaded, analyzer_home, capsys):
    assert har_cli.main(["--full", "show", "e1", "--raw"]) == 0
    assert BIG_BODY in capsys.readouterr().out
    assert not list((analyzer_home / "refs").glob("*.json"))


def test_show_unknown_entry(loaded, capsys):
    assert har_cli.main(["show", "e9"]) == 1
    assert "Entry e9 not found. Session has 3 entries (0-2)." in capsys.readouterr().err


def test_show_invalid_reference(loaded, capsys):
    assert har_cli.main(["show", "first"]) == 1
    assert "Invalid entry reference" in capsys.readouterr().err


def test_expand_stored_and_unstored_refs(loaded, capsys):
    har_cli.main(["show", "e1", "--raw"])
    capsys.readouterr()

    assert har_cli.main(["expand", "e1.rs.body"]) == 0
    assert capsys.readouterr().out.strip() == BIG_BODY

    # Never stored: read from the source HAR
    assert har_cli.main(["expand", "e2.rs.body"]) == 0
    assert capsys.readouterr().out.strip() == "boom"

    assert har_cli.main(["expand", "bogus"]) == 1


def test_search_scopes(loaded, capsys):
    url_hits = run_json(capsys, "search", "missing", "--scope", "url")
    assert [m["entry"]["index"] for m in url_hits] == [1]

    body_hits = run_json(capsys, "search", "boom", "--scope", "body")
    assert [m["entry"]["index"] for m in body_hits] == [2]
    assert body_hits[0]["scope"] == "body"

    header_hits = run_json(capsys, "search", "bearer", "--scope", "header")
    assert [m["entry"]["index"] for m in header_hits] == [1]


def test_domains(loaded, capsys):
    rows = run_json(capsys, "domains")
    assert [(r["domain"], r["count"]) for r in rows] == [("api.example.com", 2), ("errors.example.net", 1)]


def test_export_sanitize_and_strip(loaded, tmp_path, capsys):
    out_file = tmp_path / "subset.har"
    assert har_cli.main(["export", "--status", "!2xx", "--sanitize", "--strip-bodies", "-o", str(out_file)]) == 0
    exported = json.loads(out_file.read_text(encoding="utf-8"))

    entries = exported["log"]["entries"]
    assert len(entries) == 2
    assert entries[0]["request"]["headers"][0]["value"] == "[REDACTED]"
    assert "text" not in entries[0]["response"]["content"]
    assert "token=%5BREDACTED%5D" in entries[1]["request"]["url"] or \
        "token=[REDACTED]" in entries[1]["request"]["url"]
    assert "page=2" in entries[1]["request"]["url"]


def test_sessions_listing(loaded, capsys):
    infos = run_json(capsys, "sessions")
    assert len(infos) == 1
    assert infos[0]["is_current"] is True
    assert infos[0]["entry_count"] == 3


@pytest.mark.parametrize("query", ["", "   "])
def test_search_rejects_empty_query(loaded, capsys, query):
    assert har_cli.main(["search", query]) == 1
    assert "Search query must not be empty" in capsys.readouterr().err


def test_domain_previews_bodies_through_refs(loaded, capsys):
    rows = run_json(capsys, "domain", "api.example.com")
    assert [r["index"] for r in rows] == [0, 1]
    assert rows[0]["body"] == '{"ok": true}'
    assert rows[1]["body"].startswith(BIG_BODY)

    again = run_json(capsys, "domain", "api.example.com", "--status", "4xx")
    assert [r["index"] for r in again] == [1]
    assert BIG_BODY not in again[0]["body"]
    assert "[ref:e1.rs.body]" in again[0]["body"]


def test_domain_without_entries(loaded, capsys):
    assert har_cli.main(["domain", "nowhere.test"]) == 0
    assert 'No entries found for domain "nowhere.test".' in capsys.readouterr().out


def test_diff_marks_differences(loaded, capsys):
    result = run_json(capsys, "diff", "e0", "1")
    assert result["entries"] == ["e0", "e1"]

    differs = {p["property"]: p["differs"] for p in result["properties"]}
    assert differs["Status"] is True
    assert differs["Method"] is False

    headers = {(h["scope"], h["name"]): (h["first"], h["second"]) for h in result["headers"]}
    assert headers[("Rq", "accept")] == ("application/json", None)
    assert headers[("Rq", "authorization")] == (None, "Bearer secret")
    assert not any(scope == "Rs" for scope, _ in headers)

    assert result["bodies"]["e0"] == '{"ok": true}'
    assert result["bodies"]["e1"].startswith(BIG_BODY)

    # The second body view is a reference
    assert har_cli.main(["diff", "e1", "e2"]) == 0
    out = capsys.readouterr().out
    assert BIG_BODY not in out
    assert "[ref:e1.rs.body]" in out
    assert "* Status" in out


def test_diff_unknown_entry(loaded, capsys):
    assert har_cli.main(["diff", "e0", "e7"]) == 1
    assert "Entry e7 not found" in capsys.readouterr().err


def test_cookies_flow(analyzer_home, write_har, capsys):
    login = make_har_entry("https://app.example.com/login", "POST", response_headers=[
        {"name": "Set-Cookie", "value": "sid=abc; Path=/; HttpOnly; Secure; SameSite=Lax"},
    ])
    later = [make_har_entry(f"https://app.example.com/page/{i}",
                            request_headers=[{"name": "Cookie", "value": "sid=abc; theme=dark"}])
             for i in range(3)]
    path = write_har([login, *later])
    assert har_cli.main(["load", str(path)]) == 0
    capsys.readouterr()

    cookies = {c["name"]: c for c in run_json(capsys, "cookies")}
    assert cookies["sid"]["set_by_entry"] == 0
    assert cookies["sid"]["flags"] == ["HttpOnly", "Secure", "SameSite=Lax"]
    assert cookies["sid"]["sent_in_entries"] == [1, 2, 3]
    assert cookies["theme"]["set_by_entry"] is None

    assert har_cli.main(["cookies"]) == 0
    out = capsys.readouterr().out
    assert "2 cookies found:" in out
    assert "Set by: e0 /login" in out
    assert "Sent in 3 requests: [e1..e3]" in out
    assert "Set by: (pre-existing)" in out


def test_cookies_none(loaded, capsys):
    assert har_cli.main(["cookies"]) == 0
    assert "No cookies found in HAR file." in capsys.readouterr().out


def test_security_scan(loaded, capsys):
    findings = run_json(capsys, "security")
    assert [(f["entry_index"], f["severity"], f["category"]) for f in findings] == [
        (2, "HIGH", "API Key in Query String"),
        (2, "HIGH", "Sensitive Data in URL"),
    ]

    assert har_cli.main(["security"]) == 0
    out = capsys.readouterr().out
    assert "Security Scan: 2 finding(s)" in out
    assert "-- [!!!] HIGH (2) --" in out
    assert "/boom (errors.example.net)" in out
