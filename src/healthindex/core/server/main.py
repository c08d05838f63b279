"""Server entry point: ``python -m healthindex.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from healthindex.core.config.settings import Settings, get_settings
from healthindex.core.server.app import create_app

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind(settings: Settings) -> None:
    """Refuse a network bind that would expose the tools beyond this host.

    Raises:
        RuntimeError: If HTTP transport targets a non-loopback host and
            HIX_ALLOW_INSECURE_BIND is not set.
    """
    if settings.hix_transport == "stdio" or settings.hix_allow_insecure_bind:
        return
    if not _is_loopback_host(settings.hix_host):
        raise RuntimeError(
            f"Refusing to bind the health index server to {settings.hix_host!r}: "
            "there is no auth layer in front of patient data. "
            "Set HIX_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )


def run() -> None:
    """Start the health index MCP server on the configured transport."""
    settings = get_settings()
    logging.basicConfig(level=settings.hix_log_level.upper(), format=LOG_FORMAT)
    check_bind(settings)

    mcp = create_app()
    if settings.hix_transport == "stdio":
        logger.info("Starting Clinical Health Index server on stdio")
        mcp.run(transport="stdio")
        return

    logger.info(
        "Starting Clinical Health Index server on %s:%d",
        settings.hix_host,
        settings.hix_port,
    )
    mcp.run(
        transport="streamable-http",
        host=settings.hix_host,
        port=settings.hix_port,
    )


if __name__ == "__main__":
    run()
