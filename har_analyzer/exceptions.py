"""
har_analyzer/exceptions.py

Custom exceptions for the HAR analyzer.
"""


class HarAnalyzerError(Exception):
    """
    Base class for all HAR analyzer errors.
    """


class NoSessionError(HarAnalyzerError):
    """
    Raised when a command needs a loaded session and none is available,
    or when a requested session hash is unknown.
    """

    def __init__(self, message: str = "No session loaded. Use `load <file>` first."):
        super().__init__(message)


class EntryNotFoundError(HarAnalyzerError):
    """
    Raised when an entry reference points outside the loaded session.
    """

    def __init__(self, index: int, entry_count: int):
        self.index = index
        self.entry_count = entry_count
        if entry_count > 0:
            message = (
                f"Entry e{index} not found. Session has {entry_count} entries "
                f"(0-{entry_count - 1})."
            )
        else:
            message = f"Entry e{index} not found. Session has no entries."
        super().__init__(message)


class InvalidEntryReferenceError(HarAnalyzerError):
    """
    Raised when an entry reference is neither "e<N>" nor "<N>".
    """


class InvalidFilterError(HarAnalyzerError):
    """
    Raised when a numeric filter argument from the command line cannot be used.
    Glob and status patterns never raise; they fall back to literal matching.
    """


class StorageIOError(HarAnalyzerError):
    """
    Raised when the session or reference store cannot be written.
    """


class HarParseError(HarAnalyzerError, ValueError):
    """
    Raised when a HAR file is not valid JSON or has no log.entries.
    """
