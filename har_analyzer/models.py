"""
Pydantic models for HAR sessions, entry filters and stored references.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, List


class IndexedEntry(BaseModel):
    """Normalized view of one captured HTTP transaction"""

    # Identification
    index: int = Field(description="Position in log.entries of the source file (e<index>)")
    method: str = Field(description="HTTP method")
    url: str = Field(description="Full request URL")
    domain: str = Field(description="URL hostname")
    path: str = Field(description="URL path including query string")

    # Response
    status: int = Field(description="HTTP status code")
    status_text: str = Field(default="", description="HTTP status text")
    mime_type: str = Field(default="", description="Response content MIME type")

    # Sizes (bytes, unknown sizes clamped to 0)
    request_size: int = Field(default=0, description="Request body size")
    response_size: int = Field(default=0, description="Response content size")
    request_body_size: int = Field(default=0, description="Request body size on the wire")
    response_body_size: int = Field(default=0, description="Response body size on the wire")
    request_body_mime_type: str = Field(default="", description="MIME type of posted data")
    has_request_body: bool = Field(default=False, description="Whether a request body was sent")
    has_response_body: bool = Field(default=False, description="Whether a response body was received")

    # Timing
    time_ms: float = Field(default=0.0, description="Total elapsed time in ms")
    started_date_time: str = Field(default="", description="ISO-8601 start timestamp")

    # Classification
    is_error: bool = Field(default=False, description="Status >= 400")
    is_redirect: bool = Field(default=False, description="Status in 3xx")
    redirect_url: Optional[str] = Field(default=None, description="Redirect target, if any")


class SessionStats(BaseModel):
    """Summary statistics computed once when a HAR is loaded"""
    entry_count: int = Field(default=0, description="Number of indexed entries")
    domains: Dict[str, int] = Field(default_factory=dict, description="Request count per domain")
    status_distribution: Dict[str, int] = Field(default_factory=dict, description="Count per status class (2xx, 4xx, ...)")
    total_size_bytes: int = Field(default=0, description="Sum of response sizes")
    total_time_ms: float = Field(default=0.0, description="Sum of entry times")
    error_count: int = Field(default=0, description="Entries with status >= 400")
    mime_type_distribution: Dict[str, int] = Field(default_factory=dict, description="Count per MIME type")
    start_time: str = Field(default="", description="startedDateTime of the first entry")
    end_time: str = Field(default="", description="startedDateTime of the last entry")


class HarSession(BaseModel):
    """Cached, parsed representation of one loaded HAR file"""
    version: int = Field(default=1, description="On-disk session format version")
    source_file: str = Field(description="Absolute path of the HAR file")
    source_hash: str = Field(description="Hash of the HAR file content")
    created_at: float = Field(description="Unix time the session was parsed")
    last_accessed_at: float = Field(description="Unix time the session was last loaded")
    stats: SessionStats = Field(default_factory=SessionStats, description="Summary statistics")
    entries: List[IndexedEntry] = Field(default_factory=list, description="Indexed entries in file order")
    domains: Dict[str, List[int]] = Field(default_factory=dict, description="Entry indices per domain")

    def get_entry(self, index: int) -> Optional[IndexedEntry]:
        """Return the entry with the given index, or None."""
        # Entries are stored in index order; skipped entries leave gaps
        if 0 <= index < len(self.entries) and self.entries[index].index == index:
            return self.entries[index]
        for entry in self.entries:
            if entry.index == index:
                return entry
        return None

    @property
    def max_index(self) -> int:
        return self.entries[-1].index if self.entries else -1


class SessionInfo(BaseModel):
    """One row of the `sessions` listing"""
    source_hash: str = Field(description="Session identifier")
    source_file: str = Field(description="HAR file the session was built from")
    entry_count: int = Field(description="Number of entries")
    created_at: float = Field(description="Unix time the session was parsed")
    last_accessed_at: float = Field(description="Unix time the session was last loaded")
    is_current: bool = Field(default=False, description="Whether this is the last-used session")


class RefEntry(BaseModel):
    """Large value stored once per session and referenced afterwards"""
    id: str = Field(description="Reference ID, equal to the context tag")
    source_hash: str = Field(description="Session the reference belongs to")
    context_tag: str = Field(description="Where the value came from, e.g. e14.rs.body")
    full_value: str = Field(description="Value as first rendered")
    preview: str = Field(description="Single-line preview of the value")
    size: int = Field(description="Character count of the full value")
    created_at: float = Field(description="Unix time the reference was stored")


class RefStore(BaseModel):
    """Reference table of one session"""
    source_hash: str = Field(description="Session the references belong to")
    refs: Dict[str, RefEntry] = Field(default_factory=dict, description="References by ID")


class EntryFilter(BaseModel):
    """
    Entry selection criteria. Every field is optional; unset fields do not
    constrain the result and set fields are combined with AND.
    """
    domain: Optional[str] = Field(default=None, description="Glob over the URL host, case-insensitive")
    url: Optional[str] = Field(default=None, description="Glob over the full URL, case-insensitive")
    status: Optional[str] = Field(default=None, description="Exact code (200), class (4xx) or negation (!3xx)")
    method: Optional[str] = Field(default=None, description="Comma-separated HTTP methods")
    type: Optional[str] = Field(default=None, description="Glob over the MIME type")
    min_time: Optional[float] = Field(default=None, description="Inclusive lower bound on time_ms")
    min_size: Optional[int] = Field(default=None, description="Inclusive lower bound on response_size")
    limit: Optional[int] = Field(default=None, description="Keep only the first N matches")

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())
