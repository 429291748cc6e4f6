from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[1]

OVERFILL_POLICIES = ("OVERFILL", "REJECT")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _env(name: str) -> AliasChoices:
    return AliasChoices(name, name.upper())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BACKEND_DIR / ".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str
    auto_create_schema: bool = Field(default=True, validation_alias=_env("auto_create_schema"))

    # Sessions
    jwt_secret_key: str = Field(
        validation_alias=AliasChoices("jwt_secret_key", "jwt_secret", "JWT_SECRET_KEY", "JWT_SECRET")
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias=_env("jwt_algorithm"))
    access_token_expire_minutes: int = Field(default=480, ge=1, validation_alias=_env("access_token_expire_minutes"))
    cookie_samesite: str = Field(default="lax", validation_alias=_env("cookie_samesite"))
    # Cost of new password hashes; existing hashes keep the cost they were made with.
    bcrypt_rounds: int = Field(default=12, ge=4, le=16, validation_alias=_env("bcrypt_rounds"))

    # First admin, created at startup when both are set. The password is used verbatim.
    seed_admin_username: str | None = Field(default=None, validation_alias=_env("seed_admin_username"))
    seed_admin_password: str | None = Field(default=None, validation_alias=_env("seed_admin_password"))

    # Runtime
    environment: str = Field(default="development", validation_alias=_env("environment"))
    log_level: str | None = Field(default=None, validation_alias=_env("log_level"))
    frontend_origin: str = Field(default="http://localhost:5173", validation_alias=_env("frontend_origin"))

    # CBCS allocation
    # Cohort size split across sections when a cycle is created without any student total.
    default_section_capacity: int = Field(default=120, ge=0, validation_alias=_env("default_section_capacity"))
    # OVERFILL: a student whose preferred section is full goes to the section with the most
    #   remaining seats, even when every section is already full.
    # REJECT: the finalize run fails instead of pushing a section past max_capacity.
    overfill_policy: str = Field(default="OVERFILL", validation_alias=_env("overfill_policy"))

    @field_validator("frontend_origin")
    @classmethod
    def _normalize_frontend_origin(cls, v: str) -> str:
        # CORS compares the Origin header exactly; it never has a trailing slash.
        return v.strip().rstrip("/")

    @field_validator("cookie_samesite")
    @classmethod
    def _normalize_cookie_samesite(cls, v: str) -> str:
        return (v or "lax").strip().lower()

    @field_validator("overfill_policy")
    @classmethod
    def _normalize_overfill_policy(cls, v: str) -> str:
        v = (v or "OVERFILL").strip().upper()
        if v not in OVERFILL_POLICIES:
            raise ValueError(f"OVERFILL_POLICY must be one of {', '.join(OVERFILL_POLICIES)}")
        return v

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, v: str | None) -> str | None:
        v = (v or "").strip().upper()
        if not v:
            return None
        if v not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("seed_admin_username")
    @classmethod
    def _normalize_seed_admin_username(cls, v: str | None) -> str | None:
        return (v or "").strip() or None

    @property
    def allow_overfill(self) -> bool:
        return self.overfill_policy == "OVERFILL"


settings = Settings()
