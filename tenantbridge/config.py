# tenantbridge/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./tenantbridge.db"
    app_url: str = "http://localhost:3000"
    cors_allow_origins: str = "*"

    # ---- Logging ----
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"
    slow_query_ms: int = 500

    # ---- Paging / search ----
    default_page_size: int = 50
    max_page_size: int = 100
    search_limit: int = 20

    # ---- Domain defaults ----
    contract_number_prefix: str = "TB"
    expiring_contract_window_days: int = 60
    invitation_expiry_days: int = 7
    invitation_max_expiry_days: int = 30
    bulk_consumption_max_rows: int = 1000

    # ---- Storage ----
    # Push the request context into transaction-local Postgres settings so the
    # row-level policies installed by the migrations see the same triple.
    rls_session_variables: bool = True
    read_retry_attempts: int = 3
    read_retry_delay_ms: int = 100

    # ---- Auth (dev header principal only) ----
    auth_mode: str = "dev"  # dev|off
    dev_header_org_slug: str = "X-Org-Slug"
    dev_header_user_email: str = "X-User-Email"

    @property
    def is_prod(self) -> bool:
        return (self.app_env or "local").strip().lower() in ("prod", "production")

    def model_post_init(self, __context) -> None:
        if self.is_prod and (self.auth_mode or "").strip().lower() == "dev":
            raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")


settings = Settings()
