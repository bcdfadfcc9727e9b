import logging
import os
import sys

from safewatch.config import ALERT_LOG_FILE, LOG_DIR


def setup_logger(name="SafeWatch.alerts", log_file=ALERT_LOG_FILE, level=logging.INFO, console=True):
    """
    Alert log for lifecycle events (countdowns, reports, cancellations).
    Always written to LOG_DIR; echoed to stdout unless `console` is False.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # handlers survive repeated controller construction
    if not logger.handlers:
        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

        file_handler = logging.FileHandler(os.path.join(LOG_DIR, log_file))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        if console:
            stream_handler = logging.StreamHandler(sys.stdout)
            stream_handler.setFormatter(formatter)
            logger.addHandler(stream_handler)

    return logger
