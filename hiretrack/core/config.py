from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SearchMode = Literal["fallback", "always", "never"]


class Settings(BaseSettings):
    app_name: str = "hiring-signal-tracker"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10

    webhook_secret: str | None = None
    control_api_key: str | None = None
    autostart: bool = False

    official_api_base_url: str = "https://api.linkedin.com/rest"
    official_api_access_token: str | None = None
    official_api_version: str = "202401"
    official_api_page_size: int = 50
    official_api_max_pages: int = 3
    official_api_budget_calls: int = 100
    official_api_budget_window_seconds: float = 86400.0

    search_base_url: str = "https://www.googleapis.com/customsearch/v1"
    search_api_key: str | None = None
    search_engine_id: str | None = None
    search_results_per_query: int = 10
    search_mode: SearchMode = "fallback"
    search_date_restrict: str = "w1"
    search_query_delay_seconds: float = 1.0

    scrape_enabled: bool = True
    scrape_timeout_seconds: float = 30.0
    scrape_settle_seconds: float = 2.0

    http_timeout_seconds: float = 10.0
    inter_company_delay_seconds: float = 1.0

    slack_webhook_url: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None
    email_to: str | None = None

    sheets_base_url: str = "https://sheets.googleapis.com/v4/spreadsheets"
    sheets_spreadsheet_id: str | None = None
    sheets_access_token: str | None = None

    job_interval_minutes: int = 15
    hire_interval_minutes: int = 60
    health_interval_minutes: int = 5
    summary_hour: int = 9
    weekly_summary_day: str = "mon"
    scheduler_timezone: str = "UTC"

    hire_identity_includes_position: bool = False
    auto_verify_min_confidence: int | None = None
    min_persist_confidence: int = 0

    companies_json: str | None = None

    otel_enabled: bool = True
    otel_service_name: str = "hiring-signal-tracker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="HT_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
