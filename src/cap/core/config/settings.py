"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CAP adherence server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; participant schedules and records should not be
    # reachable from the LAN/WAN unless you opt in explicitly.
    cap_host: str = "127.0.0.1"
    cap_port: int = 8001
    cap_log_level: str = "info"
    # There is no auth layer: binding to a non-loopback host additionally
    # requires this to be true.
    cap_allow_insecure_bind: bool = False

    # Adherence defaults, applied when a request leaves them out
    default_study_start_event_id: str = "timeline_retrieved"
    # Empty: use the offset of the request's "now"
    default_client_time_zone: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
