"""Console logging for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "xloop-console"


def configure_logging(*, verbose: bool = False) -> None:
    """Send ``xloop`` logs to stderr; DEBUG when verbose, INFO otherwise.

    Agent stdout is streamed to the real stdout, so logs stay on stderr.
    Safe to call repeatedly: the previous console handler is replaced.
    """

    logger = logging.getLogger("xloop")
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbose,
        show_path=False,
        markup=False,
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
