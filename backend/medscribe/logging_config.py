import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from medscribe.config import settings

# Define log directory and files
LOG_DIR = settings.LOG_DIR
LOG_FILE = os.path.join(LOG_DIR, "app.log")
TRANSCRIPTION_LOG_FILE = os.path.join(LOG_DIR, "transcription.log")

# Dedicated channel for the transcription pipeline (job starts, retries,
# completions and permanent failures).
TRANSCRIPTION_LOGGER = "medscribe.transcription"

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(funcName)s - %(lineno)d - %(message)s"


def setup_logging():
    """
    Configures logging for the application.
    Outputs to console and a file with a detailed format. Safe to call more
    than once: the API process and every Celery worker call it at start-up.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    log_formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)

    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=1024*1024*5, backupCount=2)  # 5MB per file, 2 backups
    file_handler.setFormatter(log_formatter)

    if not root_logger.handlers:
        root_logger.addHandler(console_handler)
        root_logger.addHandler(file_handler)
    else:
        has_file_handler = any(isinstance(h, logging.FileHandler) for h in root_logger.handlers)
        if not has_file_handler:
            root_logger.addHandler(file_handler)
        has_console_handler = any(
            isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
            for h in root_logger.handlers
        )
        if not has_console_handler:
            root_logger.addHandler(console_handler)

    transcription_logger = logging.getLogger(TRANSCRIPTION_LOGGER)
    transcription_logger.setLevel(logging.INFO)
    has_channel_file = any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(TRANSCRIPTION_LOG_FILE)
        for h in transcription_logger.handlers
    )
    if not has_channel_file:
        channel_handler = RotatingFileHandler(TRANSCRIPTION_LOG_FILE, maxBytes=1024*1024*5, backupCount=2)
        channel_handler.setFormatter(log_formatter)
        transcription_logger.addHandler(channel_handler)

    # Configure specific loggers if needed
    logging.getLogger("medscribe").setLevel(logging.INFO)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.info("Logging configured successfully (console and file).")
