"""
AI call platform configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CallPlatformConfig(BaseSettings):
    """Call platform settings from environment (CALL_PLATFORM_ prefix)."""

    model_config = SettingsConfigDict(
        env_prefix="CALL_PLATFORM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(default="https://api.vapi.ai")
    api_key: str = Field(default="")
    phone_number_id: str = Field(default="", description="Caller id registered on the platform.")
    assistant_id: str = Field(default="", description="Default assistant placing outbound calls.")
    request_timeout_seconds: float = Field(default=20.0, gt=0, le=120)

    def get_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def get_call_platform_config() -> CallPlatformConfig:
    return CallPlatformConfig()
