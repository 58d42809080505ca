"""
Event routes: which job an outbox event becomes, and with what payload.
"""

import json
from dataclasses import dataclass
from typing import Any

from api.config.logging import get_logger
from api.v1.core.registries import EventRouteRegistry, event_route_registry
from api.v1.infra.outbox.models import OutboxEvent

logger = get_logger(__name__)

SEND_EMAIL = "send_email"
REALTIME_PUSH = "realtime_push"

EMAIL_EVENTS = ("verification_email", "recovery_email")


def parse_metadata(raw: str | None) -> dict[str, Any]:
    """Best-effort JSON decode of the opaque metadata column."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class EmailRoute:
    """Transactional email events; the handler needs the decoded metadata."""

    job_type: str = SEND_EMAIL

    def build_payload(self, event: OutboxEvent) -> dict[str, Any]:
        meta = parse_metadata(event.metadata_)
        if event.metadata_ and not meta:
            logger.warning(
                "Email event metadata is not a JSON object",
                event_id=event.id,
                event_name=event.event_name,
            )
        return {
            **meta,
            "event_id": event.id,
            "event_name": event.event_name,
            "email": meta.get("email"),
        }


@dataclass(frozen=True)
class RealtimePushRoute:
    """Everything else fans out to realtime listeners; metadata stays raw."""

    job_type: str = REALTIME_PUSH

    def build_payload(self, event: OutboxEvent) -> dict[str, Any]:
        return {
            "event_id": event.id,
            "event_name": event.event_name,
            "event_key": event.event_key or event.event_name,
            "audience_type": event.audience_type,
            "audience_id": event.audience_id,
            "company_id": event.company_id,
            "driver_id": event.driver_id,
            "request_id": event.request_id,
            "metadata": event.metadata_,
        }


def register_default_routes(registry: EventRouteRegistry = event_route_registry) -> None:
    """Install the built-in routes; unlisted events go to realtime push."""
    email = EmailRoute()
    for event_name in EMAIL_EVENTS:
        registry.register(event_name, email)
    registry.set_default(RealtimePushRoute())


def register_route(
    event_name: str,
    job_type: str,
    registry: EventRouteRegistry = event_route_registry,
) -> None:
    """Send ``event_name`` to ``job_type`` with the realtime payload shape."""
    registry.register(event_name, RealtimePushRoute(job_type=job_type))
