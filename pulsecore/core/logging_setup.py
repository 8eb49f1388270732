"""Logging setup driven by the ``logging`` config section."""

import logging
import logging.handlers
from pathlib import Path

from .config import LoggingConfig


def setup_logging(config: LoggingConfig, verbose: bool = False) -> logging.Logger:
    """Configure the root logger from config. Safe to call more than once."""
    root = logging.getLogger()
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)
    root.setLevel(level)

    formatter = logging.Formatter(config.format)

    if not any(getattr(h, "_pulsecore", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._pulsecore = True
        root.addHandler(console)

        if config.file_path:
            Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                config.file_path,
                maxBytes=config.max_file_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler._pulsecore = True
            root.addHandler(file_handler)

    return root
