import logging
import sys

def setup_logging(name: str = "instant_consult", level: int = logging.INFO):
    """
    Configure the application logger.

    Modules get children of this logger via ``logger.getChild(...)`` so a
    single handler formats everything.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

logger = setup_logging()
