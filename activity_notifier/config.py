import json
from typing import Any, Dict, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    """Configuration settings for the Activity Notifier Service"""

    # Application settings
    service_name: str = "activity-notifier"
    log_level: str = "INFO"
    log_json: bool = True
    environment: str = "dev"

    # Relational store
    database_url: str = "sqlite:///./activity_notifier.sqlite3"
    database_password: Optional[str] = None

    # Firebase settings
    firebase_service_account_json: Optional[str] = None
    fcm_server_key: Optional[str] = None  # legacy transport only
    push_transport: Literal["v1", "legacy"] = "v1"
    fcm_base_url: str = "https://fcm.googleapis.com"
    oauth_token_url: str = "https://oauth2.googleapis.com/token"

    # Outbound timeouts
    push_timeout_seconds: float = 10.0
    token_timeout_seconds: float = 10.0

    # Alert bookkeeping
    dispatch_only_unalerted: bool = False
    alert_lookup_fatal: bool = True

    # Notification content
    notification_title: str = "Nueva actividad en tu zona"
    notification_fallback_body: str = "Se ha creado una nueva actividad"
    click_action: str = "FLUTTER_NOTIFICATION_CLICK"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def resolved_database_url(self) -> str:
        """Database URL with the store credential merged in, if one is configured."""
        if not self.database_password:
            return self.database_url
        url = make_url(self.database_url).set(password=self.database_password)
        return url.render_as_string(hide_password=False)

    def service_account_info(self) -> Dict[str, Any]:
        """
        Parse the Firebase service account JSON.

        Returns:
            Dict with the service account fields (client_email, private_key, project_id, ...)

        Raises:
            ValueError: If the JSON is not configured or cannot be parsed
        """
        raw = self.firebase_service_account_json
        if not raw:
            raise ValueError("FIREBASE_SERVICE_ACCOUNT_JSON not configured")
        try:
            info = json.loads(raw)
            # Some secret stores hand the JSON back double-encoded
            if isinstance(info, str):
                info = json.loads(info)
        except json.JSONDecodeError as e:
            raise ValueError(f"FIREBASE_SERVICE_ACCOUNT_JSON is not valid JSON: {e.msg}") from e
        if not isinstance(info, dict):
            raise ValueError("FIREBASE_SERVICE_ACCOUNT_JSON must be a JSON object")
        return info
