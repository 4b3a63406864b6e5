"""
Telephony provider configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider credentials (used for webhook signature validation)
    twilio_auth_token: str = Field(default="")
    validate_signatures: bool = Field(
        default=False,
        description="Reject Twilio webhooks whose X-Twilio-Signature does not verify.",
    )

    # Public base URL of this service as reachable by Twilio and the agent.
    # Empty -> the base URL of the inbound request is used instead.
    webhook_base_url: str = Field(default="")

    # PIN challenge
    pin_timeout_seconds: int = Field(default=10, ge=3, le=60)

    def get_webhook_url(self, path: str, request_base_url: str = "") -> str:
        base = (self.webhook_base_url or request_base_url).rstrip("/")
        return f"{base}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
