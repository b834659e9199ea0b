"""Process-wide logging setup for the API server."""

import logging
import sys
from typing import Union


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    # Configure root logger once; uvicorn keeps its own handlers.
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
