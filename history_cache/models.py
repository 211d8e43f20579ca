"""
Pydantic models for the conversation-history cache.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, List


class SessionMetadataRecord(BaseModel):
    """Cached metadata of one conversation file"""
    file_path: str = Field(description="Absolute path of the JSONL file (primary key)")
    session_id: Optional[str] = Field(default=None, description="Conversation session ID")
    custom_title: Optional[str] = Field(default=None, description="User-assigned title (latest wins)")
    summary: Optional[str] = Field(default=None, description="Generated summary (latest wins)")
    first_prompt: Optional[str] = Field(default=None, description="Text of the first user message")
    git_branch: Optional[str] = Field(default=None, description="Git branch at conversation start")
    project: Optional[str] = Field(default=None, description="Project name derived from the path")
    cwd: Optional[str] = Field(default=None, description="Working directory at conversation start")
    mtime: int = Field(description="File mtime in ms at the last successful extraction")
    first_timestamp: Optional[str] = Field(default=None, description="Timestamp of the first message")
    is_subagent: bool = Field(default=False, description="Whether this is a subagent transcript")
    all_user_text: Optional[str] = Field(default=None, description="User message text, capped")


class FileIndexRecord(BaseModel):
    """Per-file bookkeeping for incremental statistics"""
    file_path: str = Field(description="Absolute path of the JSONL file")
    mtime: int = Field(description="File mtime in ms when indexed")
    message_count: int = Field(default=0, description="Lines parsed as messages")
    first_date: Optional[str] = Field(default=None, description="Earliest message date (YYYY-MM-DD)")
    last_date: Optional[str] = Field(default=None, description="Latest message date (YYYY-MM-DD)")
    project: Optional[str] = Field(default=None, description="Project name")
    is_subagent: bool = Field(default=False, description="Whether this is a subagent transcript")
    last_indexed: str = Field(description="ISO time of the last indexing")


class TokenUsage(BaseModel):
    """Token counters"""
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    cache_create_tokens: int = Field(default=0)
    cache_read_tokens: int = Field(default=0)

    def add(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_create_tokens=self.cache_create_tokens + other.cache_create_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )


class DailyStats(BaseModel):
    """Aggregated activity for one day"""
    date: str = Field(description="YYYY-MM-DD")
    project: str = Field(default="__all__", description="Project name or __all__")
    conversations: int = Field(default=0)
    messages: int = Field(default=0)
    subagent_sessions: int = Field(default=0)
    tool_counts: Dict[str, int] = Field(default_factory=dict)
    hourly_activity: Dict[str, int] = Field(default_factory=dict)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_counts: Dict[str, int] = Field(default_factory=dict)
    branch_counts: Dict[str, int] = Field(default_factory=dict)


class FileStats(BaseModel):
    """Statistics computed from one conversation file"""
    conversations: int = Field(default=1)
    messages: int = Field(default=0)
    subagent_sessions: int = Field(default=0)
    tool_counts: Dict[str, int] = Field(default_factory=dict)
    daily_activity: Dict[str, int] = Field(default_factory=dict)
    hourly_activity: Dict[str, int] = Field(default_factory=dict)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_counts: Dict[str, int] = Field(default_factory=dict)
    branch_counts: Dict[str, int] = Field(default_factory=dict)
    first_date: Optional[str] = Field(default=None)
    last_date: Optional[str] = Field(default=None)


class CachedTotals(BaseModel):
    """Quick totals for instant display"""
    total_conversations: int = Field(default=0)
    total_messages: int = Field(default=0)
    total_subagents: int = Field(default=0)
    project_count: int = Field(default=0)
    last_updated: str = Field(description="ISO time of the last update")


class AggregatedStats(BaseModel):
    """Daily stats merged over a date range"""
    total_conversations: int = Field(default=0)
    total_messages: int = Field(default=0)
    subagent_count: int = Field(default=0)
    tool_counts: Dict[str, int] = Field(default_factory=dict)
    daily_activity: Dict[str, int] = Field(default_factory=dict)
    hourly_activity: Dict[str, int] = Field(default_factory=dict)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_counts: Dict[str, int] = Field(default_factory=dict)
    branch_counts: Dict[str, int] = Field(default_factory=dict)
    daily_tokens: Dict[str, TokenUsage] = Field(default_factory=dict)


class ConversationStats(AggregatedStats):
    """Aggregated stats plus per-project counts and conversation lengths"""
    project_counts: Dict[str, int] = Field(default_factory=dict)
    conversation_lengths: List[int] = Field(default_factory=list)


class SessionListingResult(BaseModel):
    """Result of an incremental session listing"""
    sessions: List[SessionMetadataRecord] = Field(default_factory=list, description="Sessions, newest first")
    total: int = Field(default=0, description="Cached sessions in scope (including subagents)")
    subagents: int = Field(default=0, description="Subagent sessions in scope")
    indexed: int = Field(default=0, description="Files (re-)indexed by this call")
    stale_removed: int = Field(default=0, description="Cache rows removed for deleted files")
    reindexed: bool = Field(default=False, description="Whether a version change wiped the cache")
    project_count: int = Field(default=0, description="Distinct projects in scope")
    scope: str = Field(default="all projects", description="Project scope of the listing")


class SearchResult(BaseModel):
    """Metadata search hit"""
    session: SessionMetadataRecord = Field(description="Matching session")
    relevance_score: float = Field(default=0.0, description="Higher is better")
