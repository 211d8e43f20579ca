"""
History Cache - Incremental metadata cache over Claude conversation logs.

This package provides tools for:
- Extracting bounded session metadata from JSONL conversation files
- Keeping an mtime-keyed SQLite index that only re-reads changed files
- Listing, searching and aggregating statistics from the cache
"""

__version__ = "1.0.0"
