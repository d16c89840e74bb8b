"""Engine settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tunables for ranking, vote validation and storage.

    Every field can be overridden with a ``FORUMRANK_`` prefixed
    environment variable or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="FORUMRANK_",
        env_file=".env",
        extra="ignore",
    )

    # Storage and logging
    db_path: Path = Field(default=Path("forum.db"))
    log_level: str = Field(default="INFO")

    # Ranking
    gravity: float = Field(default=1.8)
    lightweight_sites: list[str] = Field(default_factory=list)
    topstories_consider: int = Field(default=1000)
    topstories_keep: int = Field(default=180)
    maxend: int = Field(default=210)

    # Visibility
    max_delay: int = Field(default=10)

    # Vote integrity
    admins: list[str] = Field(default_factory=list)
    legit_threshold: int = Field(default=0)
    new_age_threshold: int = Field(default=0)
    new_karma_threshold: int = Field(default=2)
    downvote_threshold: int = Field(default=200)
    lowest_score: int = Field(default=-4)
    vote_window: int = Field(default=100)
    downvote_ratio_limit: float = Field(default=0.65)
    enforce_downvote_ratio: bool = Field(default=False)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
