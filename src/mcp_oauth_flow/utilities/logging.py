"""Logging utilities for the OAuth flow."""

import logging
from typing import Literal


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """Configure logging for the command line driver.

    Library modules only emit records on their module loggers and never call this.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="[%X]",
    )
    # httpx logs every request at INFO, which drowns out the flow's own records
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
