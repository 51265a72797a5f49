"""
Logging setup for the interview API.
"""
import logging
import os


def setup_logging(level: str | None = None, log_file_path: str | None = None) -> None:
    """
    Configure the root logger with a console handler and an optional file handler.

    Args:
        level: Log level name, defaults to LOG_LEVEL or INFO
        log_file_path: Full path to a log file, defaults to LOG_FILE (unset = console only)
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file_path = log_file_path or os.getenv("LOG_FILE")

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s - %(message)s"))
    root_logger.addHandler(console_handler)

    if log_file_path:
        workdir = os.path.dirname(log_file_path)
        if workdir:
            os.makedirs(workdir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
        )
        root_logger.addHandler(file_handler)
