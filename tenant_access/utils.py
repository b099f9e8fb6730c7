"""
Logging helpers shared across the service.
"""
import logging
import sys

from tenant_access.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    root = logging.getLogger("tenant_access")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger under the service namespace.

    Usage:
        log = get_logger(__name__)
        log.info("Role %s created", role.id)
    """
    _configure_root()
    return logging.getLogger(name)
