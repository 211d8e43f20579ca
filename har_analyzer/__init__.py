"""
HAR Analyzer - Session-based exploration of HAR captures from the command line.

This package provides tools for:
- Parsing HAR files into compact, indexed entry records
- Filtering entries by domain, URL, status, method, MIME type, size and time
- Caching parsed sessions across CLI invocations (keyed by content hash)
- Deduplicating large bodies/headers in output through session-scoped references
- Searching entries and exporting filtered, sanitized HAR subsets
- Comparing entries, tracking cookie flow and scanning for exposed credentials
"""

__version__ = "1.0.0"
