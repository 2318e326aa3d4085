import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(config, console=True):
    """Configure application logging"""

    # Create log directory if it doesn't exist
    log_file = config['LOG_FILE']
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, config.get('LOG_LEVEL', 'INFO'), logging.INFO)

    handlers = []

    # File handler
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config.get('LOG_MAX_BYTES', 10485760),
        backupCount=config.get('LOG_BACKUP_COUNT', 10)
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")
