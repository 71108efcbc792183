import logging
import sys

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'

logger = logging.getLogger("frame_proxy")


def setup_logging(log_file=None, level=logging.INFO):
    """Configure console output and, optionally, a log file we can inspect later"""
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, '_frame_proxy', False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler._frame_proxy = True
        logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler._frame_proxy = True
            logger.addHandler(file_handler)

    logger.setLevel(level)
    return logger


def log_request(mode, method, url, status="→", level=logging.INFO):
    """Consistent logging format"""
    logger.log(level, f"[{mode.upper():8}] {status} {method:4} {url[:80]}")
