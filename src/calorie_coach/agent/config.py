"""
Conversational agent and workflow processor configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentConfig(BaseSettings):
    """Remote conversational agent (ElevenLabs) the call is handed off to."""

    model_config = SettingsConfigDict(
        env_prefix="ELEVENLABS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    agent_id: str = Field(default="")
    api_key: str = Field(default="")
    stream_url: str = Field(
        default="wss://api.elevenlabs.io/v1/convai/conversation",
        description="Bidirectional media stream endpoint of the agent.",
    )


class WorkflowConfig(BaseSettings):
    """External workflow processor (n8n) that ingests transcripts."""

    model_config = SettingsConfigDict(
        env_prefix="N8N_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    webhook_url: str = Field(default="http://localhost:5678/webhook")
    process_path: str = Field(default="/process-transcript")
    # Must fit inside the agent's webhook timeout.
    timeout_seconds: float = Field(default=5.0, ge=0.5, le=10.0)

    @property
    def transcript_url(self) -> str:
        return f"{self.webhook_url.rstrip('/')}{self.process_path}"


def get_agent_config() -> AgentConfig:
    return AgentConfig()


def get_workflow_config() -> WorkflowConfig:
    return WorkflowConfig()
