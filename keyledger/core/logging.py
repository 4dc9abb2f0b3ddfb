from __future__ import annotations

import logging

from keyledger.core.config import Settings, get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    # Install one stream handler so worker and script output share a format.
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    # redis and arq are chatty at DEBUG; keep them at the service level or above.
    for name in ("redis", "arq"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    logging.getLogger(__name__).debug("logging_configured app=%s level=%s", settings.app_name, settings.log_level)
