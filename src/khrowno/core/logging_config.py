"""Lightweight logging setup for tools embedding the security subsystem."""

import logging
import sys
from typing import Optional, Union

from .config import load_config


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    # Configure root logger once; keep output simple for terminals.
    if level is None:
        level = load_config().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
