"""
Unit tests for HAR parsing and content extraction.
"""

import json

import pytest

from conftest import make_har, make_har_entry
from har_analyzer.exceptions import HarParseError
from har_analyzer.parser import (
    compute_source_hash,
    extract_content,
    extract_domain_and_path,
    format_bytes,
    is_interesting_mime_type,
    load_har_file,
    parse_har_file,
)


def test_load_har_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_har_file(tmp_path / "nope.har")


@pytest.mark.parametrize("content", ["not json", '{"log": {}}', "[]"])
def test_load_har_file_invalid(tmp_path, content):
    path = tmp_path / "bad.har"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(HarParseError):
        load_har_file(path)


def test_source_hash_is_stable_and_short():
    assert compute_source_hash(b"abc") == compute_source_hash(b"abc")
    assert compute_source_hash(b"abc") != compute_source_hash(b"abd")
    assert len(compute_source_hash(b"abc")) == 16


def test_extract_domain_and_path():
    assert extract_domain_and_path("https://api.example.com/v1/users?page=2") == \
        ("api.example.com", "/v1/users?page=2")
    assert extract_domain_and_path("https://example.com") == ("example.com", "/")
    assert extract_domain_and_path("not a url") == ("unknown", "not a url")


def test_parse_har_file_skips_malformed_entries(write_har):
    path = write_har([
        make_har_entry(status=200),
        "garbage",
        make_har_entry("https://other.example.com/x", status=404),
    ])
    session = parse_har_file(path)

    assert [e.index for e in session.entries] == [0, 2]
    assert session.get_entry(2).domain == "other.example.com"
    assert session.get_entry(1) is None
    assert session.stats.entry_count == 2
    assert session.stats.status_distribution == {"2xx": 1, "4xx": 1}
    assert session.stats.error_count == 1
    assert session.domains == {"api.example.com": [0], "other.example.com": [2]}


def test_parse_har_file_clamps_negative_sizes(tmp_path):
    entry = make_har_entry()
    entry["request"]["bodySize"] = -1
    entry["response"]["content"]["size"] = -1
    path = tmp_path / "neg.har"
    path.write_text(json.dumps(make_har([entry])), encoding="utf-8")

    parsed = parse_har_file(path).entries[0]
    assert parsed.request_size == 0
    assert parsed.response_size == 0


def test_extract_content_parts():
    entry = make_har_entry(body='{"a": 1}', request_body='{"q": 2}',
                           request_headers=[{"name": "X-Test", "value": "1"}])
    assert extract_content(entry, "rq.headers") == "X-Test: 1"
    assert extract_content(entry, "rq.body") == '{"q": 2}'
    assert extract_content(entry, "rs.body") == '{"a": 1}'
    assert extract_content(entry, "nope") is None


def test_extract_content_binary_body():
    entry = make_har_entry(mime_type="image/png", body="iVBORw0KGgo=")
    entry["response"]["content"]["encoding"] = "base64"
    entry["response"]["content"]["size"] = 2048
    assert extract_content(entry, "rs.body") == "[binary: image/png, 2.0 KB]"


def test_interesting_mime_types():
    assert is_interesting_mime_type("application/json; charset=utf-8")
    assert is_interesting_mime_type("text/html")
    assert not is_interesting_mime_type("image/png")
    assert not is_interesting_mime_type("")


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(5000) == "4.9 KB"
    assert format_bytes(None) == "0 B"
