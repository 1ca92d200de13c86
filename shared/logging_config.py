"""
Logging setup for the BMC change supervisor.

Poll loops log each observed state change at INFO and each failed
reconnect attempt at WARNING, so a single stdout stream is enough to
follow a long reset or RAID job. urllib3 is capped at INFO because the
poll loops would otherwise log one connection line per status read.
The launcher can add a file copy of the same stream.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

def setup_logging(
    component_name: str,
    level=logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
):
    """
    Configure logging for a component.

    Args:
        component_name: Component identifier (e.g., 'bmc')
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        format_string: Custom format string (default provided)
    """
    if format_string is None:
        format_string = f'[%(asctime)s] [{component_name.upper()}] %(levelname)s - %(name)s - %(message)s'

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt='%Y-%m-%d %H:%M:%S'))
        logging.getLogger().addHandler(file_handler)

    # urllib3 logs every connection attempt at DEBUG, too noisy while polling
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    logger = logging.getLogger(component_name)
    logger.info(f"{component_name.upper()} logging initialized (level={logging.getLevelName(level)})")

    return logger
