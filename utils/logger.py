"""
DramaCut 로거

모든 모듈은 get_logger("<module>") 로 `dramacut.<module>` 로거를 받는다.
Level comes from LOG_LEVEL (default DEBUG); retries and continuity skips
log at WARNING / INFO so a normal run stays readable at INFO.
"""
import logging
import sys
import os

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return the `dramacut.<name>` logger, attaching a stdout handler once."""
    logger = logging.getLogger(f"dramacut.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        level = os.getenv("LOG_LEVEL", "DEBUG").upper()
        logger.setLevel(getattr(logging, level, logging.DEBUG))
    return logger
