"""
Logging Setup — console and file handlers under LOG_DIR.
"""
import logging
import os

from storefront.config import get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

PAYMENTS_LOGGER = "storefront.payments"

_configured = False


def setup_logging() -> None:
    """Configure root + payments loggers once per process."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger("storefront")
    root.setLevel(settings.LOG_LEVEL)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    server_file = logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log"))
    server_file.setFormatter(formatter)
    root.addHandler(server_file)

    # Payment traffic also goes to its own file for support lookups
    payments = logging.getLogger(PAYMENTS_LOGGER)
    payments_file = logging.FileHandler(os.path.join(settings.LOG_DIR, "payments.log"))
    payments_file.setFormatter(formatter)
    payments.addHandler(payments_file)

    _configured = True


def get_payments_logger(name: str) -> logging.Logger:
    """Child of the payments logger, e.g. storefront.payments.finalize."""
    return logging.getLogger(f"{PAYMENTS_LOGGER}.{name}")
