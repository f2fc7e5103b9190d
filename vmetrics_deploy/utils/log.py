import logging

PACKAGE_LOGGER = "vmetrics_deploy"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package logger.

    Handlers and levels are left to the application; configure them on the
    ``vmetrics_deploy`` logger.
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
