import logging, sys

FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"

def setup_logging(level: str = "INFO") -> logging.Logger:
    """One stdout handler on the `indexer` logger tree; safe to call twice."""
    logger = logging.getLogger("indexer")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
