from __future__ import annotations

import logging
import logging.handlers
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: str = "") -> None:
    """Configure the root logger with a console handler and an optional rotating file.

    discord.py's own loggers are capped at INFO so gateway chatter does not
    drown out review logs when running at DEBUG.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
        except OSError:
            root.exception("Could not open log file %s; logging to console only", log_file)
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    if root.level < logging.INFO:
        logging.getLogger("discord").setLevel(logging.INFO)
