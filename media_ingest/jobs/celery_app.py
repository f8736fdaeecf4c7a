"""
Celery application instance and configuration.
"""

import logging

from celery import Celery
from celery.signals import after_setup_logger

from ..version import get_version_string
from .config import get_celery_config

logger = logging.getLogger(__name__)

# Create Celery app
app = Celery("media_ingest")

# Load configuration from object
app.config_from_object(get_celery_config())

# Explicitly import tasks so workers register them
from . import tasks  # noqa: E402,F401


@after_setup_logger.connect
def setup_celery_logging(logger: logging.Logger, **kwargs) -> None:  # type: ignore
    """Configure Celery logging to match application logging."""
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Update all handlers
    for handler in logger.handlers:
        handler.setFormatter(formatter)

    logger.info(f"media-ingest worker {get_version_string()}")


if __name__ == "__main__":
    app.start()
