from __future__ import annotations

import logging

from redis.asyncio import Redis

from keyledger.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


def create_redis(settings: Settings | None = None) -> Redis:
    # Each owner (worker, script, service) builds and closes its own client; nothing is cached globally.
    settings = settings or get_settings()
    timeout = settings.redis_socket_timeout_s
    logger.debug("credential_redis_client timeout_s=%s", timeout)
    return Redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )
