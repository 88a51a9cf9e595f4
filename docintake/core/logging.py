"""
Logging setup
"""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single root handler. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(getattr(h, "_docintake", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._docintake = True
        root.addHandler(handler)
    # Quiet the per-statement engine chatter unless explicitly requested
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
