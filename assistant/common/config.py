"""
Configuration loader for the application assistant pipeline.

Loads all settings from environment variables (.env file).
Validates required settings and provides type-safe access.
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """
    Centralized configuration for all pipeline components.

    All values loaded from environment variables - NO SECRETS IN CODE.
    """

    # ===== MongoDB =====
    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "application_assistant")

    # ===== LLM APIs =====
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "")

    # ===== Web Search =====
    FIRECRAWL_API_KEY: str = os.getenv("FIRECRAWL_API_KEY", "")

    # ===== LLM Model Configuration =====
    FAST_MODEL: str = os.getenv("FAST_MODEL", "gpt-4o-mini")
    GENERAL_MODEL: str = os.getenv("GENERAL_MODEL", "gpt-4o")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    # Per-call ceilings (milliseconds); always further bounded by the run budget
    LLM_TIMEOUT_MS: int = int(os.getenv("LLM_TIMEOUT_MS", "60000"))
    EMBED_TIMEOUT_MS: int = int(os.getenv("EMBED_TIMEOUT_MS", "30000"))

    # ===== Run Deadline =====
    RUN_DEADLINE_MINUTES: float = float(os.getenv("RUN_DEADLINE_MINUTES", "15"))
    DEADLINE_EXTENSION_MINUTES: float = float(os.getenv("DEADLINE_EXTENSION_MINUTES", "10"))
    MAX_RUN_MINUTES: float = float(os.getenv("MAX_RUN_MINUTES", "40"))
    WRAP_UP_SECONDS: float = float(os.getenv("WRAP_UP_SECONDS", "60"))
    HEARTBEAT_SECONDS: float = float(os.getenv("HEARTBEAT_SECONDS", "30"))

    # Operator response window for login / captcha waits (not counted against the deadline)
    HUMAN_WAIT_TIMEOUT_SECONDS: float = float(os.getenv("HUMAN_WAIT_TIMEOUT_SECONDS", "600"))

    # ===== Browser =====
    BROWSER_HEADLESS: bool = _env_bool("BROWSER_HEADLESS", "false")
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000"))

    # ===== Artifacts =====
    ARTIFACTS_DIR: str = os.getenv("ARTIFACTS_DIR", "./runs")

    # ===== Company Dossier =====
    DOSSIER_FRESHNESS_DAYS: int = int(os.getenv("DOSSIER_FRESHNESS_DAYS", "30"))
    DOSSIER_MAX_PAGES: int = int(os.getenv("DOSSIER_MAX_PAGES", "8"))
    DOSSIER_COVERAGE_TARGET: float = float(os.getenv("DOSSIER_COVERAGE_TARGET", "0.7"))

    # ===== Feature Flags =====
    ENABLE_COMPANY_RESEARCH: bool = _env_bool("ENABLE_COMPANY_RESEARCH", "true")
    ENABLE_RAG_FOCUS: bool = _env_bool("ENABLE_RAG_FOCUS", "true")

    # Temperature settings
    CLASSIFIER_TEMPERATURE: float = 0.1
    ANALYTICAL_TEMPERATURE: float = 0.2

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required configuration is present.
        Raises ValueError if critical settings are missing.
        """
        required_settings = {
            "OPENAI_API_KEY": cls.OPENAI_API_KEY,
        }

        missing = [name for name, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required configuration: {', '.join(missing)}. "
                f"Please check your .env file."
            )

        if cls.MAX_RUN_MINUTES < cls.RUN_DEADLINE_MINUTES:
            raise ValueError(
                f"MAX_RUN_MINUTES ({cls.MAX_RUN_MINUTES}) must be >= "
                f"RUN_DEADLINE_MINUTES ({cls.RUN_DEADLINE_MINUTES})"
            )

    @classmethod
    def get_llm_api_key(cls) -> str:
        """Get the API key for LLM and embedding calls."""
        return cls.OPENAI_API_KEY

    @classmethod
    def get_llm_base_url(cls) -> Optional[str]:
        """LLM base URL (None to use OpenAI directly)."""
        return cls.OPENAI_BASE_URL or None

    @classmethod
    def summary(cls) -> str:
        """Return a summary of the current configuration (safe for logging)."""
        return f"""
Configuration Summary:
  MongoDB: {'✓ Configured' if cls.MONGODB_URI else '✗ Missing (in-memory dossier store)'}
  LLM: OpenAI {'✓' if cls.get_llm_api_key() else '✗ Missing'}
  Models: fast={cls.FAST_MODEL} general={cls.GENERAL_MODEL} embed={cls.EMBEDDING_MODEL}
  FireCrawl search: {'✓ Configured' if cls.FIRECRAWL_API_KEY else '✗ Missing (fallback paths only)'}
  Deadline: {cls.RUN_DEADLINE_MINUTES}m (+{cls.DEADLINE_EXTENSION_MINUTES}m once, max {cls.MAX_RUN_MINUTES}m)
  Human wait timeout: {cls.HUMAN_WAIT_TIMEOUT_SECONDS}s
  Browser headless: {cls.BROWSER_HEADLESS}
  Artifacts: {cls.ARTIFACTS_DIR}
        """.strip()
