"""
Job registry initialization.

Registers the built-in job handlers with a job registry.
"""

import logging

from api.config.settings import Settings
from api.v1.core.registries import JobRegistry, job_registry
from api.v1.infra.jobs.handlers import NoopHandler, RealtimePushHandler, SendEmailHandler
from api.v1.infra.outbox.routing import REALTIME_PUSH, SEND_EMAIL

logger = logging.getLogger(__name__)

NOOP = "noop"


def register_job_handlers(
    settings: Settings, registry: JobRegistry = job_registry
) -> None:
    """Register all built-in job handlers with the job registry."""

    logger.info("Registering job handlers")

    registry.register(SEND_EMAIL, SendEmailHandler(settings))
    registry.register(REALTIME_PUSH, RealtimePushHandler())
    registry.register(NOOP, NoopHandler())

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
