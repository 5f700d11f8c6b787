import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FORMAT = "[ %(asctime)s ] %(levelname)s %(name)s - %(message)s"

_configured = False


def _configure_root():
    """Attach console + rotating file handlers to the root logger once."""
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if os.getenv("LOG_TO_FILE", "1") != "0":
        os.makedirs(LOG_DIR, exist_ok=True)
        log_file = os.path.join(LOG_DIR, f"{datetime.now().strftime('%Y_%m_%d')}.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Returns a named logger. Handlers live on the root logger, configured on
    first use; LOG_LEVEL and LOG_TO_FILE=0 tune them.
    """
    _configure_root()
    return logging.getLogger(name)
