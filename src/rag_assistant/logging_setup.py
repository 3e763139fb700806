"""
Logging configuration: a timestamped log file under the logs directory plus
console output.
"""

import datetime
import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(name: str = "rag_assistant", log_dir: str = "./logs", verbose: bool = False) -> Path:
    """
    Configure root logging for a front end.

    Creates ``<log_dir>/<name>_<timestamp>.log`` and mirrors records to the
    console. Calling it again replaces the handlers installed before.

    Returns:
        Path of the log file
    """
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"{name}_{timestamp}.log"

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ],
        force=True
    )
    # HTTP connection chatter stays out of the console unless verbose
    logging.getLogger("urllib3").setLevel(logging.DEBUG if verbose else logging.WARNING)
    return log_file
