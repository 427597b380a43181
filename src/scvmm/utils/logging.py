"""Logging utilities."""

import logging
import sys


# Loggers that trace every remote call when extra debug output is on
REMOTE_LOGGERS = ("scvmm.remote", "scvmm.controller.reconciler")

QUIET_LOGGERS = ("asyncio", "pypsrp", "spnego", "smbprotocol", "urllib3", "watchfiles")


def setup_logging(level: str = "INFO", extra_debug: bool = False):
    """Configure the root logger.

    With ``extra_debug`` the remote command traffic is logged at DEBUG even
    when the root level is higher.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if extra_debug:
        for name in REMOTE_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)
