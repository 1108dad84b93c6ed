"""
chatrecall Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables (prefix ``CHATRECALL_``).
"""

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_dir() -> str:
    """
    Get XDG-compliant data directory for chatrecall.

    - Uses $XDG_DATA_HOME/chatrecall if XDG_DATA_HOME is set
    - Falls back to $HOME/.local/share/chatrecall if not set
    - Returns relative path .chatrecall if HOME not available (dev/testing)

    Returns:
        str: Path to data directory
    """
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "chatrecall")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "chatrecall")

    return ".chatrecall"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for chatrecall logs.

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "chatrecall" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "chatrecall" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHATRECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Store
    database_url: str = f"sqlite:///{get_xdg_data_dir()}/chatrecall.db"
    database_echo: bool = False

    # OpenAI embeddings
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("CHATRECALL_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_base_url: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_max_tokens: int = 8000  # ~4 chars per token
    embedding_timeout_seconds: float = 30.0

    # Background embedding
    embedding_batch_size: int = 10
    embedding_batch_pause_seconds: float = 0.05

    # Import
    import_batch_size: int = 50  # Commit every N conversations
    dedup_time_tolerance_seconds: float = 2.0  # Legacy title+time match window
    dedup_bucket_seconds: int = 2  # Cleanup grouping bucket

    # Message-level retrieval (RAG)
    rag_min_similarity: float = 0.30
    rag_weak_signal_cutoff: float = 0.34
    rag_max_messages: int = 3000
    rag_full_context_enabled: bool = True
    rag_strong_threshold: float = 0.58
    rag_strong_relative_delta: float = 0.07
    rag_max_full_conversations: int = 5
    rag_max_transcript_chars: int = 2800
    rag_max_prompt_chars: int = 9000

    # Conversation-level search
    search_min_similarity: float = 0.35
    search_max_conversations: int = 400
    search_max_embeddings_per_conversation: int = 30
    search_debounce_seconds: float = 0.3

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to XDG state dir if empty
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def embedding_max_chars(self) -> int:
        """Character budget for a single embedding input."""
        return self.embedding_max_tokens * 4


# Global settings instance
settings = Settings()
