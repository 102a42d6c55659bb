import logging
import coloredlogs

from .config import LOG_LEVEL


def setup_global_logger():
    logger = logging.getLogger("buildboard")
    logger.setLevel(LOG_LEVEL)

    # coloredlogs installs its own console handler on 'logger'
    coloredlogs.install(level=LOG_LEVEL, logger=logger, fmt='%(asctime)s %(name)s %(levelname)s %(message)s')
    return logger


def get_child_logger(name: str):
    """Returns a logger under the 'buildboard' hierarchy, e.g. for one project/branch."""
    return logging.getLogger(f"buildboard.{name}")


# Initialize global logger
logger = setup_global_logger()
