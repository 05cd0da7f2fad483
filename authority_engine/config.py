"""Authority Engine — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class AuthoritySettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Remote Store ───────────────────────────────────────────
    api_base_url: str = "http://localhost:8080"
    api_timeout_seconds: float = 10.0
    access_token: str = ""
    affiliation_id: str = ""

    # ── Authority Editing ──────────────────────────────────────
    program_catalog_kind: str = "MNKND_001"
    copy_candidate_page_size: int = 100

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = AuthoritySettings()
