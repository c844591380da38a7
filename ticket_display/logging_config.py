import logging
import os
import sys


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure logging for the ticket display service and clients."""
    log_level = level or os.environ.get("LOG_LEVEL", "INFO")
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger("ticket_display")
    root.setLevel(numeric_level)
    root.handlers[:] = [handler]
    root.propagate = False

    logging.basicConfig(level=logging.WARNING)

    # Quiet noisy libraries
    for name in ("paho", "redis"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
