# energy_console/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # ---------- Database ----------
    DATABASE_URL: str = Field(default="", env=["DATABASE_URL"])
    # Only create tables at startup in dev; Alembic owns the schema in prod
    RUN_DB_CREATE_ALL: bool = Field(default=False, env=["RUN_DB_CREATE_ALL"])

    # ---------- Public site ----------
    BASE_URL: str = Field(default="http://localhost:8000", env=["BASE_URL", "PUBLIC_URL"])
    COMPANY_NAME: str = Field(default="Energiaykkönen Oy", env=["COMPANY_NAME"])

    # ---------- Admin bootstrap ----------
    ADMIN_EMAIL: Optional[str] = Field(default=None, env=["ADMIN_EMAIL"])
    ADMIN_PASSWORD: Optional[str] = Field(default=None, env=["ADMIN_PASSWORD"])
    ADMIN_USERNAME: str = Field(default="admin", env=["ADMIN_USERNAME"])
    SECRET: str = Field(default="", env=["SECRET"])
    COOKIE_SECURE: bool = Field(default=False, env=["COOKIE_SECURE"])
    ADMIN_SESSION_HOURS: int = Field(default=12, env=["ADMIN_SESSION_HOURS"])

    # ---------- Calculator runtime ----------
    LEAD_RATE_LIMIT_PER_MINUTE: int = Field(default=10, env=["LEAD_RATE_LIMIT_PER_MINUTE"])
    FORMULA_RATE_LIMIT_PER_MINUTE: int = Field(default=30, env=["FORMULA_RATE_LIMIT_PER_MINUTE"])
    FORMULA_CACHE_TTL_SECONDS: int = Field(default=300, env=["FORMULA_CACHE_TTL_SECONDS"])
    DEFAULT_REVEAL_DELAY_SECONDS: int = Field(default=3, env=["DEFAULT_REVEAL_DELAY_SECONDS"])
    # idle calculator sessions drop their in-memory reveal state after this
    REVEAL_SESSION_TTL_SECONDS: int = Field(default=3600, env=["REVEAL_SESSION_TTL_SECONDS"])
    # form-builder schema served to the public calculator
    FORM_SCHEMA_NAME: str = Field(default="Energy Calculator Form", env=["FORM_SCHEMA_NAME"])

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )

    # ---------- Email / SMTP ----------
    EMAIL_TRANSPORT: Literal["smtp", "dummy"] = Field(
        default="smtp",
        env=["EMAIL_TRANSPORT"],
    )
    SMTP_HOST: str = Field(default="smtp.gmail.com", env=["SMTP_HOST"])
    SMTP_PORT: int = Field(default=587, env=["SMTP_PORT"])
    SMTP_USERNAME: Optional[str] = Field(default=None, env=["SMTP_USERNAME"])
    SMTP_PASSWORD: Optional[str] = Field(default=None, env=["SMTP_PASSWORD"])
    SMTP_FROM: Optional[str] = Field(default=None, env=["SMTP_FROM"])
    SMTP_USE_TLS: bool = Field(default=True, env=["SMTP_USE_TLS"])
    SMTP_USE_SSL: bool = Field(default=False, env=["SMTP_USE_SSL"])
    SALES_NOTIFICATION_EMAIL: Optional[str] = Field(default=None, env=["SALES_NOTIFICATION_EMAIL"])
    SEND_LEAD_EMAILS: bool = Field(default=True, env=["SEND_LEAD_EMAILS"])


settings = Settings()
