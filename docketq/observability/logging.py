"""Logger factory for the docketq package.

Every module logger hangs off the "docketq" logger, which owns the single
stream handler. Third-party loggers (uvicorn, httpx) keep their own setup.
"""

from __future__ import annotations

import logging
import os
from typing import Final

ROOT_LOGGER_NAME: Final[str] = "docketq"
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"


def _resolve_level() -> int:
    level_name = os.getenv("DOCKETQ_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _configure_package_logger() -> logging.Logger:
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(getattr(h, "_docketq", False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        handler._docketq = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)
    package_logger.setLevel(_resolve_level())
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the "docketq" hierarchy.

    Module names outside the package (e.g. "__main__") are nested under it
    so they share the handler and level.
    """
    _configure_package_logger()
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
