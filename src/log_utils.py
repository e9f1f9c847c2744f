"""
Logging utilities for the GCE test-host provisioner.
"""

import logging
import sys


def setup_logging(
    verbose: bool = False, log_file: str = "gce-provision.log"
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging, including every poll probe
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(threadName)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )

    # google-auth and urllib3 are chatty at DEBUG
    for noisy in ("google.auth", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger(__name__)
