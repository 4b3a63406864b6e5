"""
TwiML call-control responses.

Builders here are pure: no I/O, no store access. The same inputs always
produce byte-identical XML, which keeps the handoff's correlation
parameters reproducible in tests and in logs.
"""

from urllib.parse import urlencode

from twilio.twiml.voice_response import VoiceResponse

from calorie_coach.agent.config import AgentConfig
from calorie_coach.auth.pin import PIN_LENGTH
from calorie_coach.telephony.config import TelephonyConfig
from calorie_coach.users.models import User

VERIFY_PIN_PATH = "/api/twilio/verify-pin"
AGENT_WEBHOOK_PATH = "/api/elevenlabs/webhook"

PIN_PROMPT = "Welcome to Calorie Coach. Please enter your {length}-digit PIN."
PIN_NOT_RECEIVED = "We didn't receive your PIN. Please try again."
PIN_INVALID = "Invalid PIN. Please try again."
PIN_VERIFIED = "PIN verified. Connecting you now."
CALL_NOT_RECOGNIZED = "Sorry, we could not find your scheduled call. Goodbye."
CALL_ALREADY_COMPLETED = "Your meals for this call have already been logged. Goodbye."
RETRIES_EXHAUSTED = "You have reached the maximum number of attempts for this call. Goodbye."
APOLOGY = "Sorry, we encountered an error. Please try again later."

# Stream parameters echoed back by the agent in its completion event
STREAM_PARAM_AGENT_ID = "agent_id"
STREAM_PARAM_AGENT_CREDENTIAL = "api_key"
STREAM_PARAM_CALL_LOG_ID = "call_log_id"
STREAM_PARAM_USER_ID = "user_id"
STREAM_PARAM_WEBHOOK_URL = "webhook_url"
STREAM_PARAM_CALL_SID = "call_sid"


class CallResponseBuilder:
    """Builds the TwiML returned to Twilio by the call-flow webhooks."""

    def __init__(
        self,
        telephony: TelephonyConfig,
        agent: AgentConfig,
        request_base_url: str = "",
    ) -> None:
        self._telephony = telephony
        self._agent = agent
        self._request_base_url = request_base_url

    def for_request(self, request_base_url: str) -> "CallResponseBuilder":
        """Builder whose URLs fall back to the base URL of the inbound request."""
        return CallResponseBuilder(self._telephony, self._agent, request_base_url)

    @property
    def completion_webhook_url(self) -> str:
        """Where the agent must POST its completion event."""
        return self._telephony.get_webhook_url(AGENT_WEBHOOK_PATH, self._request_base_url)

    def verify_pin_url(self, call_log_id: str) -> str:
        query = urlencode({"call_log_id": call_log_id})
        base = self._telephony.get_webhook_url(VERIFY_PIN_PATH, self._request_base_url)
        return f"{base}?{query}"

    def pin_challenge(self, call_log_id: str) -> str:
        """Prompt for the PIN and route the digits to the PIN handler.

        If the caller enters nothing before the gather timeout, Twilio falls
        through to the trailing Say/Hangup; no webhook is invoked.
        """
        response = VoiceResponse()
        gather = response.gather(
            action=self.verify_pin_url(call_log_id),
            method="POST",
            num_digits=PIN_LENGTH,
            timeout=self._telephony.pin_timeout_seconds,
        )
        gather.say(PIN_PROMPT.format(length=PIN_LENGTH))
        response.say(PIN_NOT_RECEIVED)
        response.hangup()
        return str(response)

    def handoff(
        self,
        user: User,
        call_log_id: str,
        call_sid: str,
        greeting: str | None = None,
    ) -> str:
        """Bridge the call to the conversational agent.

        The stream parameters form the correlation context the agent returns
        verbatim in its completion event.
        """
        response = VoiceResponse()
        if greeting:
            response.say(greeting)

        connect = response.connect()
        stream = connect.stream(url=self._agent.stream_url)
        for name, value in (
            (STREAM_PARAM_AGENT_ID, self._agent.agent_id),
            (STREAM_PARAM_AGENT_CREDENTIAL, self._agent.api_key),
            (STREAM_PARAM_CALL_LOG_ID, call_log_id),
            (STREAM_PARAM_USER_ID, user.id),
            (STREAM_PARAM_WEBHOOK_URL, self.completion_webhook_url),
            (STREAM_PARAM_CALL_SID, call_sid),
        ):
            stream.parameter(name=name, value=value)
        return str(response)

    def terminate(self, message: str) -> str:
        """Speak ``message`` and hang up."""
        response = VoiceResponse()
        response.say(message)
        response.hangup()
        return str(response)

    def apology(self) -> str:
        return self.terminate(APOLOGY)
