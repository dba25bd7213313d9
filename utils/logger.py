"""Rotating file plus console logging for complaint and account activity."""
import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s"


def _handlers(log_path: str, level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    stream_handler = logging.StreamHandler()
    for handler in (file_handler, stream_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return [file_handler, stream_handler]


def init_logging(app) -> logging.Logger:
    log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, app.config.get("LOG_FILE_NAME") or "issuesnap.log")
    level = getattr(logging, (app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)

    logger = logging.getLogger(app.name)
    # create_app may run several times per process; close the previous run's files.
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in _handlers(log_path, level):
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)

    logger.info("Logging initialized", extra={"path": log_path, "level": logging.getLevelName(level)})
    return logger
