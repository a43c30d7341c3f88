from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List, Literal, Optional
import json
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

RULES_DIR = Path(__file__).parent / "safety" / "rules"

# Documented deployment profiles. One is active per deployment.
PROFILES = {
    "lenient": {"toxicity_threshold": 0.55, "rule_table": "severe_terms_lenient.json"},
    "strict": {"toxicity_threshold": 0.3, "rule_table": "severe_terms_strict.json"},
}


class Settings(BaseSettings):
    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    PROJECT_NAME: str = "Campus Content Moderation"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    # Allow any localhost/127.0.0.1 port (useful for dev tools/proxies)
    CORS_ORIGIN_REGEX: str = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    # Moderation profile: "lenient" (0.55, smaller table) or "strict" (0.3, larger table)
    MODERATION_PROFILE: Literal["lenient", "strict"] = "lenient"
    RULE_TABLE_PATH: str = ""  # overrides the profile's bundled term table

    # Toxicity classifier (Hugging Face Inference API)
    TOXICITY_ENABLED: bool = True
    TOXICITY_API_BASE: str = "https://api-inference.huggingface.co/models"
    TOXICITY_MODELS: Annotated[List[str], NoDecode] = [
        "cardiffnlp/twitter-roberta-base-offensive",
        "unitary/toxic-bert",
    ]
    # Opaque binary-head labels that mean "toxic" (e.g. LABEL_1 from a two-class head)
    TOXICITY_POSITIVE_LABELS: Annotated[List[str], NoDecode] = ["LABEL_1"]
    HF_API_TOKEN: str = ""
    TOXICITY_THRESHOLD: Optional[float] = None  # None -> profile default
    TOXICITY_TIMEOUT_S: float = 5.0

    # Multimodal checker (Gemini)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    VISION_TIMEOUT_S: float = 8.0
    IMAGE_UNAVAILABLE_CONFIDENCE: int = 40

    # Heuristic scorer
    HEURISTIC_MIN_SCORE: int = 35
    MIN_CONTENT_CHARS: int = 10

    # Whether an inappropriate image alone rejects a submission
    IMAGE_INAPPROPRIATE_VETO: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("CORS_ORIGINS", "TOXICITY_MODELS", "TOXICITY_POSITIVE_LABELS", mode="before")
    def split_comma_separated(cls, v: Any) -> Any:
        """Accept comma-separated strings for list settings."""
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("TOXICITY_THRESHOLD")
    def threshold_in_range(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not (0.0 < v <= 1.0):
            raise ValueError(f"TOXICITY_THRESHOLD must be in (0, 1], got {v}")
        return v

    @property
    def toxicity_threshold(self) -> float:
        if self.TOXICITY_THRESHOLD is not None:
            return self.TOXICITY_THRESHOLD
        return PROFILES[self.MODERATION_PROFILE]["toxicity_threshold"]

    @property
    def rule_table_path(self) -> Path:
        if self.RULE_TABLE_PATH:
            return Path(self.RULE_TABLE_PATH)
        return RULES_DIR / PROFILES[self.MODERATION_PROFILE]["rule_table"]


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()

    # Image checks degrade to pass-by-default without a key; make that visible in production
    if settings.ENVIRONMENT == "production" and not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; image checks will report as unavailable")

    return settings
