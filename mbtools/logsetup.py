"""
Logging setup for the console scripts.

The slave responder runs unattended, so besides the usual stream handler it
logs to the system log (facility LOG_DAEMON, ident "modbus server").
"""

from __future__ import annotations

import logging
import logging.handlers
import os

SYSLOG_IDENT = "modbus server"
SYSLOG_ADDRESS = "/dev/log"


def setup_logging(tag: str, debug: bool = False, use_syslog: bool = False) -> logging.Logger:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=f"%(asctime)s | {tag} | %(levelname)s | %(message)s",
    )
    root = logging.getLogger()
    root.setLevel(level)

    log = logging.getLogger(tag.lower())
    has_syslog = any(isinstance(h, logging.handlers.SysLogHandler) for h in root.handlers)
    if use_syslog and not has_syslog and os.path.exists(SYSLOG_ADDRESS):
        try:
            handler = logging.handlers.SysLogHandler(
                address=SYSLOG_ADDRESS,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as e:
            log.warning(f"syslog unavailable, logging to stderr only: {e}")
        else:
            handler.ident = f"{SYSLOG_IDENT}[{os.getpid()}]: "
            handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
            root.addHandler(handler)

    return log
