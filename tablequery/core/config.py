from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "vue-table-query"

    DATABASE_URL: str = "sqlite+pysqlite:///./tablequery.db"
    SQL_ECHO: bool = False

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    TABLE_DEFAULT_PER_PAGE: int = 15
    TABLE_MAX_PER_PAGE: int = 1000

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
