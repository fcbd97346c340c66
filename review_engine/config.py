"""
Review Engine Configuration

All settings come from environment variables. Defaults are suitable for
local development; the external API token must be supplied in production.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .external_client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_DATA_DIR = "data/reviews"
DEFAULT_SLA_RULES_FILE = str(Path(__file__).parent.parent / "config" / "sla_rules.yaml")
DEFAULT_NOTIFICATION_LOG_DIR = "data/notifications"
DEFAULT_APP_BASE_URL = "http://localhost:8000"
DEFAULT_EXTERNAL_APP_URL = "https://app.mavenlink.com"


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class Settings:
    """Runtime configuration for the review engine service."""
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    external_api_base_url: str = DEFAULT_BASE_URL
    external_api_token: Optional[str] = None
    external_status_field_id: str = ""
    external_timeout_seconds: float = DEFAULT_TIMEOUT
    reconcile_max_concurrency: int = 5
    reconcile_interval_seconds: float = 0  # 0 disables the scheduler
    app_base_url: str = DEFAULT_APP_BASE_URL
    external_app_url: str = DEFAULT_EXTERNAL_APP_URL
    sla_rules_file: Optional[Path] = Path(DEFAULT_SLA_RULES_FILE)
    slack_webhook_url: Optional[str] = None
    notification_log_dir: Optional[Path] = Path(DEFAULT_NOTIFICATION_LOG_DIR)

    @classmethod
    def from_env(cls) -> "Settings":
        sla_rules_file = os.getenv("SLA_RULES_FILE", DEFAULT_SLA_RULES_FILE)
        notification_log_dir = os.getenv("NOTIFICATION_LOG_DIR", DEFAULT_NOTIFICATION_LOG_DIR)
        return cls(
            data_dir=Path(os.getenv("REVIEW_DATA_DIR", DEFAULT_DATA_DIR)),
            external_api_base_url=os.getenv("EXTERNAL_API_BASE_URL", DEFAULT_BASE_URL),
            external_api_token=_optional("EXTERNAL_API_TOKEN"),
            external_status_field_id=os.getenv("EXTERNAL_STATUS_FIELD_ID", ""),
            external_timeout_seconds=float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT))),
            reconcile_max_concurrency=int(os.getenv("RECONCILE_MAX_CONCURRENCY", "5")),
            reconcile_interval_seconds=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "0")),
            app_base_url=os.getenv("APP_BASE_URL", DEFAULT_APP_BASE_URL),
            external_app_url=os.getenv("EXTERNAL_APP_URL", DEFAULT_EXTERNAL_APP_URL),
            sla_rules_file=Path(sla_rules_file) if sla_rules_file else None,
            slack_webhook_url=_optional("SLACK_WEBHOOK_URL"),
            notification_log_dir=Path(notification_log_dir) if notification_log_dir else None,
        )
