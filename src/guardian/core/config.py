"""Configuration for Guardian using environment variables."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment Variables:
        GGA_DB_PATH: Path to SQLite database (default: ~/.gga/gga.db)
        GGA_LOG_LEVEL: Logging level (default: INFO)
        HEBBIAN_ENABLED: Whether associative learning runs (default: true)
        HEBBIAN_LEARNING_RATE: Reinforcement step, 0-1 (default: 0.1)
        HEBBIAN_SESSION_BOOST: Multiplier for session-close reinforcement (default: 1.5)
        HEBBIAN_MAX_SESSION_CONCEPTS: Cap on distinct concepts per session (default: 50)
        RAG_DISCLOSURE_HIGH: Score at or above which reviews are shown in full (default: 0.7)
        RAG_DISCLOSURE_MED: Score at or above which reviews are shown in detail (default: 0.5)
        RAG_MAX_TOKENS: Token budget for rendered context (default: 2000)
        RAG_WEIGHT_LEXICAL / RAG_WEIGHT_GRAPH / RAG_WEIGHT_RECENCY: Ranking mix
        RAG_RECENCY_HALF_LIFE_DAYS: Age at which recency drops to 0.5 (default: 30)
        GGA_ENGRAM_ENABLED: Enable the Engram export bridge (default: false)
        GGA_ENGRAM_OUTPUT_DIR: Directory for Engram export files
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database Configuration
    db_path: Path = Field(
        default=Path.home() / ".gga" / "gga.db",
        validation_alias="GGA_DB_PATH",
        description="Path to SQLite database",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias="GGA_LOG_LEVEL",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    # Associative learning
    learning_enabled: bool = Field(
        default=True,
        validation_alias="HEBBIAN_ENABLED",
        description="Turn associative learning on or off",
    )
    learning_rate: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        validation_alias="HEBBIAN_LEARNING_RATE",
        description="Reinforcement step applied on each co-occurrence",
    )
    session_boost: float = Field(
        default=1.5,
        ge=1.0,
        validation_alias="HEBBIAN_SESSION_BOOST",
        description="Multiplier applied to reinforcement when a session closes",
    )
    max_session_concepts: int = Field(
        default=50,
        ge=2,
        validation_alias="HEBBIAN_MAX_SESSION_CONCEPTS",
        description="Maximum distinct concepts recorded per session",
    )

    # Progressive disclosure
    disclosure_high: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        validation_alias="RAG_DISCLOSURE_HIGH",
        description="Score threshold for full disclosure",
    )
    disclosure_med: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        validation_alias="RAG_DISCLOSURE_MED",
        description="Score threshold for detail disclosure",
    )
    max_tokens: int = Field(
        default=2000,
        gt=0,
        validation_alias="RAG_MAX_TOKENS",
        description="Token budget for rendered review context",
    )

    # Retrieval ranking
    weight_lexical: float = Field(default=0.5, ge=0.0, validation_alias="RAG_WEIGHT_LEXICAL")
    weight_graph: float = Field(default=0.3, ge=0.0, validation_alias="RAG_WEIGHT_GRAPH")
    weight_recency: float = Field(default=0.2, ge=0.0, validation_alias="RAG_WEIGHT_RECENCY")
    recency_half_life_days: float = Field(
        default=30.0,
        gt=0.0,
        validation_alias="RAG_RECENCY_HALF_LIFE_DAYS",
        description="Review age in days at which the recency factor halves",
    )

    # Engram bridge
    engram_enabled: bool = Field(
        default=False,
        validation_alias="GGA_ENGRAM_ENABLED",
        description="Enable exporting insights in Engram format",
    )
    engram_output_dir: Optional[Path] = Field(
        default=None,
        validation_alias="GGA_ENGRAM_OUTPUT_DIR",
        description="Directory where Engram export files are written",
    )

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        return getattr(logging, self.log_level.upper(), logging.INFO)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
