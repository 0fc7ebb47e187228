import logging
import sys
from datetime import datetime, timezone


class ScanFormatter(logging.Formatter):
    """
    Single-line format shared by console and file output:
    [ 2026-10-18 05:32:41 UTC ] : INFO : quicscan.fallback : Message
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp = dt.strftime("%Y-%m-%d %H:%M:%S UTC")
        context = getattr(record, "context", record.name)
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logger(name="quicscan", log_file=None, level=logging.INFO):
    """Sets up the package logger; child loggers propagate to it."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if name != "quicscan":
        logger.propagate = True
        setup_logger("quicscan", log_file=log_file, level=level)
        return logger

    # Re-running only adjusts the level so repeated scans in one process
    # don't stack handlers.
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = ScanFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
