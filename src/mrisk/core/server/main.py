"""Server entry point — ``python -m mrisk.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from mrisk.core.config.settings import get_settings
from mrisk.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the Migraine Risk MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.mrisk_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.mrisk_allow_insecure_bind and not _is_loopback_host(settings.mrisk_host):
        raise RuntimeError(
            "Refusing to bind the migraine log server to a non-loopback host without "
            "an auth layer. Set MRISK_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Migraine Risk server on %s:%d", settings.mrisk_host, settings.mrisk_port
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.mrisk_host,
        port=settings.mrisk_port,
    )


if __name__ == "__main__":
    run()
