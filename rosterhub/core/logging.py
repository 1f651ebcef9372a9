"""
Logging setup.

Modules log through ``logging.getLogger(__name__)``; this module configures the
root handler once at startup. Emails and other personal data must go through
``rosterhub.services.identity.redact_text`` before being logged.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
