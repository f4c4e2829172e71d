from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    environment: str = "development"
    debug: bool = False
    seed_demo_data: bool = False

    # Storage (":memory:" selects the in-process store)
    database_path: str = "production_erp.sqlite3"
    movement_page_size: int = 200

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Order numbering
    production_code_prefix: str = "PRD"
    packaging_code_prefix: str = "PKG"

    model_config = SettingsConfigDict(
        env_prefix="PRODUCTION_ERP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def uses_memory_store(self) -> bool:
        return self.database_path == ":memory:"


@lru_cache
def get_settings() -> Settings:
    return Settings()
