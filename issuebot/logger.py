import logging
from typing import Optional


_DEFAULT_LOGGER_NAME = "issuebot"
_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Returns a configured logger instance.

    - One StreamHandler per named logger
    - INFO level unless LOG_LEVEL says otherwise
    - Safe to call multiple times
    """
    logger_name = name or _DEFAULT_LOGGER_NAME
    logger = logging.getLogger(logger_name)

    if not logger.handlers:
        # Imported lazily so settings can log while loading
        from issuebot.settings import LOG_LEVEL

        level = getattr(logging, LOG_LEVEL, logging.INFO)
        logger.setLevel(level)

        handler = logging.StreamHandler()
        handler.setLevel(level)

        formatter = logging.Formatter(_LOG_FORMAT)
        handler.setFormatter(formatter)

        logger.addHandler(handler)

        # Prevent double logging if root logger is configured
        logger.propagate = False

    return logger
