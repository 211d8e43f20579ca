"""
Unit tests for entry filtering.
"""

import pytest

from har_analyzer.exceptions import InvalidEntryReferenceError
from har_analyzer.filters import (
    filter_entries,
    glob_to_regex,
    group_by_domain,
    matches_glob,
    matches_status,
    parse_entry_index,
)
from har_analyzer.models import EntryFilter


def indices(entries):
    return [e.index for e in entries]


# ============================================================================
# STATUS SPECS
# ============================================================================

@pytest.mark.parametrize("status,spec,expected", [
    (404, "404", True),
    (404, "400", False),
    (404, "4xx", True),
    (499, "4XX", True),
    (500, "4xx", False),
    (301, "!3xx", False),
    (200, "!3xx", True),
    (404, "!404", False),
    (200, "ok", False),
    (200, "200,404", False),
])
def test_matches_status(status, spec, expected):
    assert matches_status(status, spec) is expected


def test_status_class_is_exact_range(sample_entries):
    result = filter_entries(sample_entries, EntryFilter(status="4xx"))
    assert indices(result) == [e.index for e in sample_entries if 400 <= e.status < 500]


def test_status_negation_is_complement(sample_entries):
    redirects = set(indices(filter_entries(sample_entries, EntryFilter(status="3xx"))))
    others = set(indices(filter_entries(sample_entries, EntryFilter(status="!3xx"))))
    assert redirects.isdisjoint(others)
    assert redirects | others == set(indices(sample_entries))


# ============================================================================
# GLOBS
# ============================================================================

def test_glob_wildcard_and_case():
    assert matches_glob("API.example.com", "*.example.com")
    assert not matches_glob("example.com.evil.net", "*.example.com")


def test_malformed_glob_is_literal():
    assert glob_to_regex("api.(v1").match("api.(v1")
    assert not matches_glob("apixv1", "api.(v1")


def test_domain_filter(sample_entries):
    result = filter_entries(sample_entries, EntryFilter(domain="cdn.*"))
    assert indices(result) == [2]


def test_type_filter(sample_entries):
    result = filter_entries(sample_entries, EntryFilter(type="*javascript*"))
    assert indices(result) == [2]


# ============================================================================
# COMBINATION
# ============================================================================

def test_empty_filter_returns_input(sample_entries):
    assert filter_entries(sample_entries, EntryFilter()) == sample_entries
    assert filter_entries(sample_entries, None) == sample_entries


def test_conjunction_is_subset_of_each(sample_entries):
    f1 = EntryFilter(domain="api.*")
    f2 = EntryFilter(method="get, delete")
    both = EntryFilter(domain="api.*", method="get, delete")

    combined = set(indices(filter_entries(sample_entries, both)))
    assert combined <= set(indices(filter_entries(sample_entries, f1)))
    assert combined <= set(indices(filter_entries(sample_entries, f2)))
    assert combined == {0, 3, 4}


def test_numeric_lower_bounds_are_inclusive(sample_entries):
    assert indices(filter_entries(sample_entries, EntryFilter(min_time=300))) == [1, 4]
    assert indices(filter_entries(sample_entries, EntryFilter(min_size=5000))) == [2]


def test_limit_keeps_prefix_in_order(sample_entries):
    result = filter_entries(sample_entries, EntryFilter(domain="api.*", limit=2))
    assert indices(result) == [0, 1]


def test_group_by_domain_keeps_first_seen_order(sample_entries):
    groups = group_by_domain(sample_entries)
    assert list(groups) == ["api.example.com", "cdn.example.org"]
    assert indices(groups["api.example.com"]) == [0, 1, 3, 4]


# ============================================================================
# ENTRY REFERENCES
# ============================================================================

@pytest.mark.parametrize("reference,expected", [("e14", 14), ("14", 14), (" E3 ", 3), ("e0", 0)])
def test_parse_entry_index(reference, expected):
    assert parse_entry_index(reference) == expected


@pytest.mark.parametrize("reference", ["", "e", "x14", "e-1", "e1.5", "e١٢"])
def test_parse_entry_index_rejects(reference):
    with pytest.raises(InvalidEntryReferenceError):
        parse_entry_index(reference)
