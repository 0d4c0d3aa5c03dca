"""Logging setup for training runs and optimizer searches."""

from __future__ import annotations

import logging
from logging import Logger
from typing import Iterable, Optional


def configure_logging(
    level: int = logging.INFO,
    *,
    name: str = "rmi_trainer",
    propagate: bool = False,
    extra_loggers: Optional[Iterable[str]] = None,
) -> Logger:
    """Attach a single stream handler to ``name`` (and any extra loggers).

    Parameters
    ----------
    level: int
        Logging verbosity.
    name: str
        Logger namespace; module loggers under ``rmi_trainer.*`` inherit it.
    """

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    handler.setFormatter(formatter)

    def _attach(target: Logger) -> None:
        if not any(isinstance(existing, logging.StreamHandler) for existing in target.handlers):
            target.addHandler(handler)
        target.setLevel(level)
        target.propagate = propagate

    logger = logging.getLogger(name)
    _attach(logger)

    if extra_loggers:
        for logger_name in extra_loggers:
            _attach(logging.getLogger(logger_name))

    return logger
