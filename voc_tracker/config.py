from __future__ import annotations

import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "VOC Emissions Tracker"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    DATA_SOURCE: str = "demo"  # demo | sharepoint | sql
    FALLBACK_TO_DEMO: bool = True

    # Microsoft Graph / SharePoint list store
    GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    GRAPH_ACCESS_TOKEN: str | None = None
    SHAREPOINT_SITE_URL: str = ""
    SHAREPOINT_PRODUCTS_LIST: str = "VOC_Products"
    SHAREPOINT_USAGE_LIST: str = "VOC_UsageLog"
    SHAREPOINT_UNITS_LIST: str = "VOC_EmissionUnits"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    DATABASE_URL: str = "sqlite:////tmp/voc_tracker.db"

    PERMIT_LIMITS_FILE: str | None = None

    REPORT_HORIZON_MONTHS: int = 60
    TREND_HORIZON_MONTHS: int = 12

    DEMO_SEED: int = 183
    DEMO_DAYS: int = 365

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
