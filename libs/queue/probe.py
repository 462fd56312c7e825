"""Bounded-time reachability check for the optional Redis queue backend."""

import asyncio

import structlog

logger = structlog.get_logger(__name__)


async def is_reachable(host: str, port: int, timeout: float = 5.0) -> bool:
    """
    Check whether a TCP handshake with ``host:port`` succeeds within ``timeout``.

    The connection is closed immediately on success.

    Returns:
        True if the backend accepted a connection, False otherwise

    Raises:
        No exceptions - returns False on error or timeout
    """
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Queue backend probe timed out", host=host, port=port, timeout_seconds=timeout)
        return False
    except (OSError, ValueError, OverflowError) as e:
        # Includes malformed addresses such as a port outside 0-65535
        logger.warning("Queue backend unreachable", host=host, port=port, error=str(e))
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass  # Peer reset while closing; the handshake already succeeded
    logger.debug("Queue backend reachable", host=host, port=port)
    return True
