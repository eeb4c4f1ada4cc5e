import logging
import sys

LOGGER_NAME = "moodboard"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
# HTTP client loggers are chatty at INFO; keep them quiet unless debugging
QUIET_LOGGERS = ("httpx", "httpcore")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger once; later calls only change the level."""
    logger = logging.getLogger(LOGGER_NAME)
    numeric = _resolve_level(level)
    logger.setLevel(numeric)
    if logger.handlers:
        return logger  # already configured
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
    return logger
