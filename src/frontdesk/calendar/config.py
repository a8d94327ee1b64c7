"""
OAuth client configuration for calendar providers.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CalendarOAuthConfig(BaseSettings):
    """Calendar OAuth credentials from environment (CALENDAR_ prefix)."""

    model_config = SettingsConfigDict(
        env_prefix="CALENDAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token")

    outlook_client_id: str = Field(default="")
    outlook_client_secret: str = Field(default="")
    outlook_token_url: str = Field(
        default="https://login.microsoftonline.com/common/oauth2/v2.0/token",
    )

    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)

    def credentials_for(self, provider: str) -> tuple[str, str, str] | None:
        """(token_url, client_id, client_secret) for a provider, or None if unknown."""
        if provider == "google":
            return self.google_token_url, self.google_client_id, self.google_client_secret
        if provider == "outlook":
            return self.outlook_token_url, self.outlook_client_id, self.outlook_client_secret
        return None


def get_calendar_oauth_config() -> CalendarOAuthConfig:
    return CalendarOAuthConfig()
