# weblog/log.py
import logging
import sys

FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

_handler = None


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Route the ``weblog`` logger to the current stderr.

    Calling it again replaces the previous handler, so repeated CLI
    invocations in one process never write to a stale stream.
    """
    global _handler
    logger = logging.getLogger("weblog")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if _handler is not None:
        logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(_handler)
    return logger
