# ingest/config.py
"""
Service configuration, read from the process environment and ``.env``.

Env vars (case-insensitive, empty values count as unset):
- BACKEND_NAME (default: backend-a)
- PORT (default: 8080)
- DATABASE_URL — full SQLAlchemy URL, overrides the DB_* parts (e.g. sqlite for dev/tests)
- DB_HOST, DB_PORT, DB_USER, DB_PASSWORD, DB_NAME — PostgreSQL connection parts
- DB_SSLMODE — libpq sslmode (optional)
- DB_SSL_NO_VERIFY (default: false) — encrypt without verifying the server certificate
- DB_INIT_ON_STARTUP (default: false)
- MAX_BODY_BYTES (default: 50 MiB)
- CORS_ENABLED (default: true), CORS_ALLOW_ORIGIN (default: *)
- PROMETHEUS_ENABLED (default: true)
- LOG_LEVEL (default: INFO), LOG_AS_JSON (default: true)
- SENTRY_DSN (optional), ENVIRONMENT (default: development)
"""

from typing import Any, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

MAX_BODY_BYTES = 50 * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, env_ignore_empty=True, extra="ignore")

    backend_name: str = Field(default="backend-a", min_length=1)
    port: int = 8080

    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "postgres"
    db_sslmode: Optional[str] = None
    db_ssl_no_verify: bool = False
    db_init_on_startup: bool = False

    max_body_bytes: int = Field(default=MAX_BODY_BYTES, gt=0)
    cors_enabled: bool = True
    cors_allow_origin: str = "*"

    prometheus_enabled: bool = True
    log_level: str = "INFO"
    log_as_json: bool = True
    sentry_dsn: Optional[str] = None
    environment: str = "development"

    def sqlalchemy_url(self):
        """Return the URL the storage engine connects to."""
        if self.database_url:
            return self.database_url
        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )

    def connect_args(self) -> Dict[str, Any]:
        url = str(self.sqlalchemy_url())
        if url.startswith("sqlite"):
            return {"check_same_thread": False}
        args: Dict[str, Any] = {}
        if self.db_ssl_no_verify:
            # libpq "require" encrypts but skips certificate verification
            args["sslmode"] = "require"
        elif self.db_sslmode:
            args["sslmode"] = self.db_sslmode
        return args


def load_settings(env_file: Optional[str] = ".env") -> Settings:
    """Build settings; real env vars win over ``env_file``."""
    return Settings(_env_file=env_file)
