from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR.parent


class Settings(BaseSettings):
    app_env: str = "dev"
    app_port: int = 8000
    enable_crawler: bool = Field(default=True, alias="ENABLE_CRAWLER")

    database_url_override: str | None = Field(default=None, alias="DATABASE_URL")
    sqlite_db_path: str = str(PROJECT_ROOT / "data" / "rewards.db")

    tendermint_url: str = "http://localhost:26657"
    node_timeout: float = 10.0

    crawler_name: str = "rewards"
    sleep_for: int = Field(default=60, ge=0)
    start_epoch: int = Field(default=0, ge=0)
    # Presence switches the process into backfill mode; the cursor row is never touched.
    backfill_from: int | None = Field(default=None, ge=0)
    backfill_to: int | None = Field(default=None, ge=0)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_backfill_range(self) -> "Settings":
        if self.backfill_to is not None:
            if self.backfill_from is None:
                raise ValueError("backfill_to requires backfill_from")
            if self.backfill_to < self.backfill_from:
                raise ValueError("backfill_to must not be lower than backfill_from")
        return self

    @computed_field
    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override

        sqlite_path = Path(self.sqlite_db_path).resolve()
        return f"sqlite:///{sqlite_path}"

    @computed_field
    @property
    def is_backfill(self) -> bool:
        return self.backfill_from is not None


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
