"""CAP server entry point: ``python -m cap.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from cap.core.config.settings import Settings, get_settings
from cap.core.server.app import create_app

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind(settings: Settings) -> None:
    """Refuse a non-loopback bind unless explicitly allowed (there is no auth layer)."""
    if settings.cap_allow_insecure_bind or _is_loopback_host(settings.cap_host):
        return
    raise RuntimeError(
        f"Refusing to bind CAP server to non-loopback host {settings.cap_host!r}. "
        "Set CAP_ALLOW_INSECURE_BIND=true to override (unsafe)."
    )


def run() -> None:
    """Start the CAP MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.cap_log_level.upper(), logging.INFO),
        format=_LOG_FORMAT,
    )
    check_bind(settings)
    logger.info("Starting CAP adherence server on %s:%d", settings.cap_host, settings.cap_port)

    create_app(settings_override=settings).run(
        transport="streamable-http",
        host=settings.cap_host,
        port=settings.cap_port,
    )


if __name__ == "__main__":
    run()
