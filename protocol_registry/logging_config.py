import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
from typing import Optional

from .config import config


def setup_logging(*, log_to_file: bool = True, level_name: Optional[str] = None) -> None:
    """Configure registry logging.

    The HTTP service logs to stderr and a rotating file under the data dir;
    the CLI passes ``log_to_file=False`` so one-shot commands leave no files.
    """
    raw_level = (level_name or os.environ.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, raw_level, logging.INFO)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_to_file:
        logs_dir = Path(config.SYSTEM.DATA_DIR) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = Path(os.environ.get("LOG_FILE", str(logs_dir / "protocol_registry.log")))
        max_bytes = int(os.environ.get("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
        backup_count = int(os.environ.get("LOG_BACKUP_COUNT", "5"))
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)
