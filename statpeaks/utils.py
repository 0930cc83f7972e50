import logging
import sys

LOG_FORMAT = '%(levelname)s:%(name)s: %(message)s'

logger = logging.getLogger("statpeaks")
if not logger.hasHandlers():
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def set_verbosity(debug=False):
    """Switch the package logger between info and debug output."""
    logger.setLevel("DEBUG" if debug else "INFO")
