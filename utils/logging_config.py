import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Loggers that print every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level="INFO"):
    """
    Configures logging for the application. Safe to call more than once.
    """
    level = logging.getLevelName(str(log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    handler = next(
        (h for h in root.handlers if getattr(h, "_deer_nodes_handler", False)), None
    )
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler._deer_nodes_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    handler.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)
