"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings so that a misconfigured License Server or database is
rejected at startup rather than on the first acquisition.

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__": LCP_SERVER__URL maps to
lcp_server.url, DATABASE__HOST to database.host, RIGHTS__PRINT_LIMIT to
rights.print_limit, and so on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pubstore.domain.license_request import BASIC_PROFILE

# .env at the project root, independent of the working directory.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class LcpServerSettings(BaseModel):
    """
    Access to the remote Readium LCP License Server.

    `version` selects the request wire format: "v1" for the legacy
    lcpserver, "v2" for the current one.
    """

    url: str = Field(description="License Server base URL")
    version: Literal["v1", "v2"] = Field(default="v2")
    username: str = Field(default="", description="Basic Auth user of the License Server")
    password: SecretStr = Field(default=SecretStr(""), description="Basic Auth password")
    profile: str = Field(default=BASIC_PROFILE, description="LCP encryption profile (v2)")

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"License Server URL must be absolute http(s), got {value!r}")
        return value


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either DATABASE__DSN or the individual components; the DSN wins
    when both are set. `get_dsn()` always returns a usable connection string.
    """

    dsn: SecretStr | None = Field(default=None, description="Full PostgreSQL connection string")
    host: str | None = Field(default=None)
    port: int = Field(default=5432, ge=1, le=65535)
    name: str | None = Field(default=None)
    username: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)
    pool_size: int = Field(default=5, ge=1, description="Maximum pooled connections")

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        if self.dsn is not None:
            return self
        missing = [
            env
            for env, value in (
                ("DATABASE__HOST", self.host),
                ("DATABASE__NAME", self.name),
                ("DATABASE__USERNAME", self.username),
                ("DATABASE__PASSWORD", self.password),
            )
            if not value
        ]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        assert self.password is not None
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        assert self.dsn is not None  # guaranteed by resolve_dsn
        return self.dsn.get_secret_value()


class RightsSettings(BaseModel):
    """Default rights granted when an acquisition does not specify them."""

    print_limit: int = Field(default=10, description="Printable pages; negative = unconstrained")
    copy_limit: int = Field(default=2000, description="Copyable characters; negative = unlimited")
    loan_days: int = Field(default=7, ge=1, description="Loan length when no end date is given")


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first): environment variables, .env file,
    defaults.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    lcp_server: LcpServerSettings
    database: DatabaseSettings
    rights: RightsSettings = Field(default_factory=lambda: RightsSettings())

    public_base_url: str = Field(default="http://localhost:8080")
    port: int = Field(default=8080, ge=1, le=65535)
    http_timeout_seconds: float = Field(default=5.0, gt=0)
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    status_retry_attempts: int = Field(default=2, ge=1)
    bookshelf_workers: int = Field(default=4, ge=1)
    log_level: str = Field(default="INFO")
