"""
Logging setup shared by the Streamlit app and scripts.
"""

import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging with a console handler and an optional file handler.

    Args:
        level: Log level name
        log_file: Path of the log file, or None to log to the console only
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )
