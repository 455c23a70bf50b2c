"""Logger setup shared by the server, the client and the command-line tools."""

import logging

LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str = "syncserver", level: int = logging.INFO) -> logging.Logger:
    """Attach a timestamped stream handler to ``name`` unless it already has one."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
