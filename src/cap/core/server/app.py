"""CAP adherence MCP server: application factory.

- create_app() builds a fresh server (integration tests create one per test)
- Module-level `mcp` is created lazily for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from cap.core.config.settings import Settings, get_settings
from cap.domains.adherence.tools.adherence_report_tools import register_adherence_report_tools
from cap.domains.adherence.tools.session_rollup_tools import register_session_rollup_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "CAP Participant Adherence"
SERVER_VERSION = "0.1.0"


def create_app(*, settings_override: Settings | None = None) -> FastMCP:
    """Create and configure the CAP adherence MCP server."""
    settings = settings_override or get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Clinical Adherence Protocol server. Computes how closely a study "
            "participant's completed sessions follow the study schedule, per "
            "trigger event and week by week, from schedule metadata, participant "
            "events and completion records supplied with each call."
        ),
    )

    @server.tool
    def health_check() -> dict:
        """Check server health and return the adherence defaults in effect."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "default_study_start_event_id": settings.default_study_start_event_id,
            "default_client_time_zone": settings.default_client_time_zone or None,
        }

    register_adherence_report_tools(server, settings)
    register_session_rollup_tools(server)
    logger.info("Adherence report and session roll-up tools registered")

    return server


# Module-level instance for FastMCP discovery ("server": "...app.py:mcp").
# Lazy: only created on first access, not when tests import create_app.
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
