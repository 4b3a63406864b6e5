"""
Twilio webhook signature validation.
"""

from collections.abc import Mapping

from starlette.requests import Request
from twilio.request_validator import RequestValidator

from calorie_coach.shared.logging import get_logger
from calorie_coach.telephony.config import TelephonyConfig

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"


class TwilioSignatureValidator:
    """Checks X-Twilio-Signature against the public URL Twilio called."""

    def __init__(self, config: TelephonyConfig) -> None:
        self._config = config

    @property
    def enabled(self) -> bool:
        return self._config.validate_signatures

    def public_url(self, request: Request) -> str:
        """URL as Twilio saw it; behind a tunnel/proxy request.url is wrong."""
        if not self._config.webhook_base_url:
            return str(request.url)
        url = self._config.get_webhook_url(request.url.path)
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return url

    def is_valid(self, url: str, params: Mapping[str, str], signature: str | None) -> bool:
        if not self._config.twilio_auth_token:
            logger.warning("No auth token configured, rejecting signed webhook")
            return False
        if not signature:
            return False
        validator = RequestValidator(self._config.twilio_auth_token)
        return bool(validator.validate(url, dict(params), signature))
