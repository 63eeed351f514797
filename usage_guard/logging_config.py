"""Logging configuration.

Call ``setup_logging()`` once at startup (the CLI does this) to configure
the root logger. Library modules only obtain their own logger with::

    import logging
    logger = logging.getLogger(__name__)
"""

import logging
import os
from typing import Mapping, Optional

from rich.console import Console
from rich.logging import RichHandler


JSON_FORMAT = (
    '{"time":"%(asctime)s","level":"%(levelname)s",'
    '"logger":"%(name)s","message":"%(message)s"}'
)


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    """Configure the root logger.

    * **LOG_FORMAT=json**: one JSON-like line per record, for log aggregation.
    * **LOG_FORMAT=text** (default): Rich-formatted output on stderr.

    Args:
        level: Log level name; falls back to ``LOG_LEVEL`` (default WARNING)
        log_format: ``json`` or ``text``; falls back to ``LOG_FORMAT``
        env: Environment mapping (defaults to ``os.environ``)
    """
    env = os.environ if env is None else env
    level_name = (level or env.get("LOG_LEVEL", "WARNING")).upper()
    resolved_level = getattr(logging, level_name, logging.WARNING)
    if not isinstance(resolved_level, int):
        resolved_level = logging.WARNING

    fmt = (log_format or env.get("LOG_FORMAT", "text")).lower()
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    # Replace handlers so repeated calls do not duplicate output
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
