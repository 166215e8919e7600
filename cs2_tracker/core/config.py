from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    database_url: str = "sqlite+aiosqlite:///./cs2_tracker.db"

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Staged import / storage box diffs (held in memory until confirmed)
    staged_diff_ttl_seconds: int = 3600
    staged_diff_purge_minutes: int = 10

    # Property-based re-matching of items coming back out of a storage unit
    float_match_epsilon: float = 1e-7

    # Optional live snapshot fetch from Steam Community
    steam_inventory_url: str = "https://steamcommunity.com/inventory/{steam_id}/730/2"
    steam_login_secure: str = ""
    steam_session_id: str = ""


settings = Settings()
