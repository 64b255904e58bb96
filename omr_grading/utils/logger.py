import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Union

# Grading runs on GradingWorker threads; the file log records which thread wrote each line
FILE_FORMAT = '%(asctime)s - [%(levelname)s] - (%(threadName)s) %(message)s'
CONSOLE_FORMAT = '%(asctime)s - [%(levelname)s] - %(message)s'


def setup_logger(name: str = "OMR_GRADING",
                 log_dir: Union[str, Path] = "logs",
                 console_level: int = logging.INFO) -> logging.Logger:
    """
    Set up the shared grading logger.

    File handler: DEBUG and up (cache HIT/MISS, per-round detail) in
    `<project root>/<log_dir>/grading_<date>.log`.
    Console handler: `console_level` and up (round switches, totals, warnings).

    Safe to call again: handlers are attached only once per logger name.
    """
    log_path = Path(log_dir)
    if not log_path.is_absolute():
        # utils/ -> omr_grading/ -> project root
        log_path = Path(__file__).resolve().parent.parent.parent / log_path
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    file_handler = logging.FileHandler(
        log_path / f"grading_{datetime.now().strftime('%Y-%m-%d')}.log", encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    return logger


def set_console_level(level: Union[int, str]) -> None:
    """Change how chatty the console is (e.g. from config `LOGGING.console_level`)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")
    for handler in app_logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


# Shared singleton, imported by every module as `app_logger`
app_logger = setup_logger()
