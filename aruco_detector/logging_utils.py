from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(camera)s] %(name)s: %(message)s"


class CameraNameFilter(logging.Filter):
    """Stamps every record with the camera it belongs to."""

    def __init__(self, camera_name: str):
        super().__init__()
        self.camera_name = camera_name

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "camera"):
            record.camera = self.camera_name
        return True


def _handler(handler: logging.Handler, camera_name: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CameraNameFilter(camera_name))
    return handler


def setup_logger(
    camera_name: str,
    level: int = logging.INFO,
    log_path: Optional[str] = None,
) -> logging.Logger:
    """
    Logger for one detector instance, ``aruco_detector.<camera_name>``.

    The stream handler is attached once; a file handler is added for each new
    log_path. Calling again otherwise only adjusts the level.
    """
    logger = logging.getLogger(f"aruco_detector.{camera_name}")
    logger.setLevel(level)

    if not logger.handlers:
        logger.addHandler(_handler(logging.StreamHandler(), camera_name))
    if log_path:
        add_file_handler(logger, camera_name, log_path)

    return logger


def add_file_handler(logger: logging.Logger, camera_name: str, log_path: str) -> None:
    """Attach a file handler for log_path unless one is already attached."""
    target = os.path.abspath(log_path)
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and h.baseFilename == target:
            return
    logger.addHandler(_handler(logging.FileHandler(log_path), camera_name))
