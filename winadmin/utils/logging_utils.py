"""Logging setup shared by the command-line tools."""

import logging
from typing import Optional

from winadmin import settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def configure_logging(tool: str, verbose: bool = False, console: bool = True) -> Optional[str]:
    """Send log records to the tool's fixed log file and to the console.

    The file is appended to across runs. If it cannot be opened the tool
    still runs with console logging only. Returns the log file path in use.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    path = settings.log_path(tool)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8", mode="a")
    except OSError as e:
        logging.getLogger(__name__).warning(
            "Failed to open log file %s: %s. Logging to console only.", path, e
        )
        return None
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    return str(path)
