"""Application configuration settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import Dict, List, Optional

# Get the server directory path
SERVER_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # User context storage: "memory" or "supabase"
    USER_CONTEXT_BACKEND: str = "memory"
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None
    MEMORY_RETENTION_DAYS: int = 90
    # Most recently used contexts kept in process; the store holds the rest
    CONTEXT_CACHE_SIZE: int = 1000

    # Intent catalog: built-in catalog is used when no file is configured
    INTENT_CATALOG_PATH: Optional[str] = None

    # Candidate generation
    CANDIDATE_FLOOR: float = 0.1
    MAX_CANDIDATES: int = 10

    # Interference and decoherence
    INTERFERENCE_SENSITIVITY: float = 0.1
    COHERENCE_THRESHOLD: float = 0.6
    DECOHERENCE_FACTOR: float = 0.5

    # Collapse
    PRIMARY_MIN_WEIGHT: float = 0.0
    SECONDARY_MIN_WEIGHT: float = 0.3
    MAX_SECONDARY_INTENTS: int = 3

    # Temporal context: late-night window wraps around midnight
    URGENT_HOURS_START: int = 22
    URGENT_HOURS_END: int = 6

    # Workflow synthesis
    MITIGATION_WEIGHT_THRESHOLD: float = 0.5
    ENABLE_EMOTIONAL_ADAPTATION: bool = True
    ENABLE_CROSS_TRIP_MEMORY: bool = True
    ENABLE_SOCIAL_MATCHING: bool = False
    ENABLE_CARBON_SCORING: bool = True
    ENABLE_SHADOW_PLANNING: bool = True
    ENABLE_BACKUP_PLANS: bool = True

    # Dispatch
    PROVIDER_TIMEOUT_SECONDS: float = 5.0
    MAX_PARALLEL_STEPS: int = 5
    SHUTDOWN_DRAIN_SECONDS: float = 30.0

    # Remote capability providers: capability name -> endpoint URL
    CAPABILITY_ENDPOINTS: Dict[str, str] = {}

    # Outcome learning
    LEARNER_BASELINE_SCORE: float = 0.5
    LEARNING_RATE: float = 0.01
    LEARNER_HISTORY_SIZE: int = 1000

    # Server
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def _validate_settings(self) -> "Settings":
        if self.USER_CONTEXT_BACKEND not in ("memory", "supabase"):
            raise ValueError(
                f"USER_CONTEXT_BACKEND must be 'memory' or 'supabase', "
                f"got '{self.USER_CONTEXT_BACKEND}'"
            )
        if self.USER_CONTEXT_BACKEND == "supabase" and not (
            self.SUPABASE_URL and self.SUPABASE_KEY
        ):
            raise ValueError(
                "SUPABASE_URL and SUPABASE_KEY are required when "
                "USER_CONTEXT_BACKEND=supabase"
            )
        for name in ("URGENT_HOURS_START", "URGENT_HOURS_END"):
            if not 0 <= getattr(self, name) <= 23:
                raise ValueError(f"{name} must be an hour between 0 and 23")
        if self.PROVIDER_TIMEOUT_SECONDS <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive")
        if self.MAX_CANDIDATES < 1 or self.MAX_PARALLEL_STEPS < 1:
            raise ValueError("MAX_CANDIDATES and MAX_PARALLEL_STEPS must be at least 1")
        if self.CONTEXT_CACHE_SIZE < 0:
            raise ValueError("CONTEXT_CACHE_SIZE must not be negative")
        return self

    class Config:
        env_file = str(SERVER_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
