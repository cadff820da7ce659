import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(level: str = "WARNING") -> None:
    """Route snapvault records to stderr at the given level."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level, colorize=None)
    logger.enable("snapvault")
