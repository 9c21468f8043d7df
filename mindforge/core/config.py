from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── AI Providers ──────────────────────────────────────────────────────────
    AI_PROVIDER: str = "hybrid"

    @field_validator("AI_PROVIDER")
    @classmethod
    def validate_ai_provider(cls, v: str) -> str:
        allowed = {"hybrid", "groq", "gemini"}
        if v.lower() not in allowed:
            raise ValueError(f"AI_PROVIDER must be one of {allowed}, got '{v}'")
        return v.lower()

    # Groq (Llama 3 - High Speed)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"

    # Google (Gemini)
    GOOGLE_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash-lite"

    # ── Oracle ────────────────────────────────────────────────────────────────
    AI_TIMEOUT_SECONDS: float = 60.0  # per oracle call
    ORACLE_MIN_DELAY_SECONDS: float = 1.2

    # ── Segmentation ──────────────────────────────────────────────────────────
    CHUNK_SIZE: int = 8000  # chars per chunk when bounding segmenter prompts
    SEGMENTER_INPUT_CHUNKS: int = 3
    MAX_SEGMENTS: int = 8
    SEGMENT_CHARS: int = 300
    MIN_SEGMENT_CHARS: int = 20

    # ── Tree synthesis & merging ──────────────────────────────────────────────
    FALLBACK_LABEL_CHARS: int = 120
    TREE_LEVELS: int = 3
    MAX_CHILDREN: int = 4
    MASTER_SNAPSHOT_DEPTH: int = 3
    CANDIDATE_SNAPSHOT_DEPTH: int = 2
    ROOT_FANOUT_WARNING: int = 8

    # ── Graph ─────────────────────────────────────────────────────────────────
    DEFAULT_MAX_DEPTH: int = 4
    MAX_NODES: int = 150
    NODE_LABEL_CHARS: int = 70
    EDGE_LABEL_CHARS: int = 50
    ANIMATED_MAX_LEVEL: int = 2

    # ── Layout ────────────────────────────────────────────────────────────────
    LAYOUT_DIRECTION: str = "TB"

    @field_validator("LAYOUT_DIRECTION")
    @classmethod
    def validate_layout_direction(cls, v: str) -> str:
        allowed = {"TB", "LR"}
        if v.upper() not in allowed:
            raise ValueError(f"LAYOUT_DIRECTION must be one of {allowed}, got '{v}'")
        return v.upper()

    NODE_SEP: float = 120.0
    RANK_SEP: float = 180.0
    LAYOUT_MARGIN: float = 75.0
    ANTI_CLUSTER_MIN_LEVEL: int = 3

    # ── Cache ─────────────────────────────────────────────────────────────────
    CACHE_TTL_SECONDS: Optional[float] = 3600.0
    CACHE_MAX_ENTRIES: int = 10

    # ── Core ──────────────────────────────────────────────────────────────────
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
        "http://localhost:3000",
    ]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
