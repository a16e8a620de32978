from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def _normalize_database_url(url: str) -> str:
    url = url.strip()
    if url.startswith('postgres://'):
        return 'postgresql+psycopg://' + url[len('postgres://') :]
    if url.startswith('postgresql://'):
        return 'postgresql+psycopg://' + url[len('postgresql://') :]
    return url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Service-role connection; bypasses row-level security.
    database_url: str
    # Connection subject to row-level security, used for user-facing reads.
    restricted_database_url: str | None = None

    session_cookie_name: str = 'office_app_session'
    session_ttl_minutes: int = 60
    session_cookie_secure: bool = False
    session_cookie_samesite: str = 'lax'

    query_timeout_seconds: float = 5.0
    pet_rate_per_kg: float = 1.50
    pickups_limit: int = 300
    transactions_limit: int = 1000
    analytics_limit: int = 100

    log_level: str = 'INFO'
    log_json: bool = True

    @property
    def database_url_normalized(self) -> str:
        return _normalize_database_url(self.database_url)

    @property
    def restricted_database_url_normalized(self) -> str:
        return _normalize_database_url(self.restricted_database_url or self.database_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
