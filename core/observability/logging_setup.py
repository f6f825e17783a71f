"""Process-wide logging configuration.

Modules log through ``logging.getLogger(__name__)``; this installs one
stream handler at startup. Secrets must be passed through
``core.config.redact`` before they reach a log call.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_integrations_handler", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._integrations_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    # httpx logs full request URLs at INFO, including OAuth query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)
