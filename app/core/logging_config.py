# app/core/logging_config.py
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
HANDLER_NAME = "filehost-console"


def configure_logging(level: str = "INFO") -> None:
    """Install the console handler on the root logger (once)."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(h.get_name() == HANDLER_NAME for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
