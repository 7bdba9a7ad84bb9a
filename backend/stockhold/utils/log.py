import logging
import sys

from stockhold.config import settings


def get_logger(name: str) -> logging.Logger:
    """
    Named component logger writing to stdout with a "[NAME] message" prefix.
    Handlers are attached once, so repeated imports don't duplicate output.
    """
    log = logging.getLogger(f"stockhold.{name}")
    log.setLevel(settings.LOG_LEVEL.upper())
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(f"[{name.upper()}] %(levelname)s %(message)s"))
        log.addHandler(h)
        log.propagate = False
    return log
