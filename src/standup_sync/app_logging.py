"""Logging configuration helpers."""

import logging

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "websockets")


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure the ``standup_sync`` logger with a single stream handler.

    Safe to call more than once; later calls only change the level.
    Chatty client libraries are held at WARNING so per-request lines do
    not drown out session events.
    """
    logger = logging.getLogger("standup_sync")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
