from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Empty database_url = memory-only analytics
    database_url: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    log_level: str = "INFO"

    # Privacy: salt mixed into IP / user-agent fingerprints
    hash_salt: str = "molexa-salt"

    # In-memory event buffer
    recent_capacity: int = Field(50, ge=50, le=100)
    hydrate_limit: int = Field(50, ge=0, le=100)

    # Archival
    archive_dir: str = "archives"
    prune_after_archive: bool = False
    admin_token: str = ""

    # Live stream cadence (seconds)
    stream_interval_seconds: float = 30.0
    scheduler_enabled: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url.strip())


settings = Settings()
