# app/config.py

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "OMS Match API"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"

    # Supabase (record store)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Store fetch limits
    job_fetch_limit: int = 2000
    invoice_fetch_limit: int = 500
    payment_fetch_limit: int = 500

    # Matching config: (days, amount fraction) per tier, tightest first
    high_max_days: float = 7
    high_max_amount_pct: float = 0.05
    medium_max_days: float = 30
    medium_max_amount_pct: float = 0.15
    low_max_days: float = 60
    low_max_amount_pct: float = 0.30

    # Payment candidates
    payment_candidate_limit: int = 10
    payment_candidate_pool: int = 50

    # Partner whose job exports are imported
    partner_client_name: str = "matterport"

    # Clients billed outside the normal invoice flow
    auto_match_excluded_clients: list[str] = ["matterport", "funkit"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
