"""
Application settings and configuration
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Server Configuration
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=3000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Queue Broker Configuration
    DATABASE_URL: str = Field(
        default="memory://",
        description="Queue broker address (postgresql://... or memory:// for development)",
    )
    QUEUE_NAME: str = Field(default="pr-review-queue", description="Name of the job queue")
    WORKER_CONCURRENCY: int = Field(default=3, ge=1, description="Concurrent worker slots")
    QUEUE_POLL_INTERVAL: float = Field(
        default=1.0, description="Seconds an idle worker slot waits before polling again"
    )
    JOB_LEASE_SECONDS: int = Field(
        default=900, description="Seconds before an unacknowledged attempt is considered stalled"
    )
    STALLED_CHECK_INTERVAL: float = Field(
        default=30.0, description="Seconds between stalled job sweeps"
    )
    ENQUEUE_RETRIES: int = Field(
        default=2, ge=0, description="Extra attempts for an enqueue call on broker errors"
    )
    SHUTDOWN_GRACE_SECONDS: float = Field(
        default=30.0, description="Seconds to wait for in-flight jobs on shutdown"
    )
    RUN_WORKER_IN_PROCESS: bool = Field(
        default=False, description="Drain the queue inside the web server process (always on for memory://)"
    )

    # Bot Identity
    BOT_USERNAME: str = Field(
        default="", description="GitHub login of the bot account, used to ignore its own comments"
    )
    BOT_COMMENT_MARKER: str = Field(
        default="🤖 ", description="Prefix carried by every bot-authored comment"
    )

    # GitHub Configuration
    GITHUB_APP_ID: str = Field(default="", description="GitHub App ID")
    GITHUB_APP_PRIVATE_KEY: str = Field(default="", description="GitHub App private key (PEM)")
    GITHUB_APP_PRIVATE_KEY_PATH: Optional[Path] = Field(
        default=None, description="Path to the GitHub App private key file"
    )
    GITHUB_TOKEN: str = Field(
        default="", description="Personal access token used when no GitHub App is configured"
    )
    GITHUB_WEBHOOK_SECRET: str = Field(
        default="", description="GitHub webhook secret (signature checks are skipped when empty)"
    )
    GITHUB_API_URL: str = Field(
        default="https://api.github.com", description="GitHub API URL"
    )

    # Claude CLI Configuration
    CLAUDE_CODE_PATH: str = Field(
        default="claude", description="Path to claude CLI tool"
    )
    REVIEWER_TIMEOUT: int = Field(
        default=600, description="Timeout in seconds for a single AI reviewer call"
    )

    @property
    def github_private_key(self) -> str:
        """Get the GitHub App private key, reading it from disk if a path is configured"""
        if self.GITHUB_APP_PRIVATE_KEY_PATH:
            return self.GITHUB_APP_PRIVATE_KEY_PATH.read_text()
        return self.GITHUB_APP_PRIVATE_KEY

    @property
    def uses_postgres(self) -> bool:
        """Whether the queue broker is a PostgreSQL database"""
        return self.DATABASE_URL.startswith(("postgres://", "postgresql://"))

    @property
    def drains_in_process(self) -> bool:
        """Whether the web process drains the queue; an in-memory queue is unreachable from worker.py"""
        return self.RUN_WORKER_IN_PROCESS or not self.uses_postgres

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
