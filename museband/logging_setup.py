"""Console logging for the command-line tools."""

import logging
import sys

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# bleak and its platform backends log every GATT operation at DEBUG
NOISY_LOGGERS = ("bleak",)


def setup_logging(verbose: bool = False, bleak_debug: bool = False) -> logging.Handler:
    """Route log records to stderr so streamed readings on stdout stay clean.

    ``verbose`` turns on DEBUG for museband itself; bleak stays at WARNING
    unless ``bleak_debug`` is also set.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers[:] = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if bleak_debug else logging.WARNING)
    return handler
