import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ===== ENTORNO =====
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    # Optional: when set, logs are also written to a daily rotating file here
    log_dir: str | None = Field(default=None)

    # ===== DATABASE =====
    database_url: str = Field(default="sqlite+aiosqlite:///./shop_erp.db")

    # ===== LEDGER =====
    movement_page_size: int = Field(default=100, gt=0)
    ledger_cas_retries: int = Field(default=3, ge=1)

    class Config:
        env_file = ".env"
        case_sensitive = False

    @field_validator("database_url", mode="after")
    @classmethod
    def async_driver(cls, v: str) -> str:
        if v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg does not understand sslmode in the query string
        v = re.sub(r'[?&]sslmode=[^&]*', '', v)
        return v.replace('?&', '?').rstrip('?')

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


settings = Settings()
