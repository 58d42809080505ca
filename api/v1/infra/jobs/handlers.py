"""
Built-in job handlers.

This module contains job handlers that implement the JobHandler protocol
and are registered in the job registry by ``register_job_handlers``.
"""

import logging
from typing import Any

import httpx

from api.config.settings import Settings
from api.v1.core.exceptions import PermanentJobError
from api.v1.core.registries import JobContext

logger = logging.getLogger(__name__)

EMAIL_SUBJECTS = {
    "verification_email": "Verify your account",
    "recovery_email": "Reset your password",
}
DEFAULT_SUBJECT = "Notification"


class SendEmailHandler:
    """
    Job handler that delivers a transactional email through the provider API.

    Payload expected:
    {
        "email": "driver@example.com",
        "event_name": "verification_email",
        "token": "123456"  # optional, rendered into the body
    }
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    def build_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        event_name = payload.get("event_name")
        subject = EMAIL_SUBJECTS.get(event_name, DEFAULT_SUBJECT)

        token = payload.get("token")
        if event_name == "verification_email":
            body = f"Your verification code is: {token}"
        elif event_name == "recovery_email":
            body = f"Use this token to reset your password: {token}"
        else:
            body = DEFAULT_SUBJECT

        return {
            "personalizations": [{"to": [{"email": payload["email"]}]}],
            "from": {"email": self.settings.email_from},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

    async def handle(
        self,
        payload: dict[str, Any],
        context: JobContext,
    ) -> dict[str, Any] | None:
        """Send one email; 4xx responses other than 429 are not retried."""

        if not payload.get("email"):
            raise PermanentJobError("email is required in payload")

        message = self.build_message(payload)

        if context.dry_run:
            logger.info(
                "Dry run: email not sent",
                extra={
                    "job_id": context.job_id,
                    "to": payload["email"],
                    "subject": message["subject"],
                },
            )
            return {"status": "dry_run", "subject": message["subject"]}

        if not self.settings.email_api_key:
            raise RuntimeError("EMAIL_API_KEY is not configured")

        headers = {"Authorization": f"Bearer {self.settings.email_api_key}"}
        if self._client is not None:
            response = await self._client.post(
                self.settings.email_api_url, json=message, headers=headers
            )
        else:
            async with httpx.AsyncClient(timeout=self.settings.email_timeout_s) as client:
                response = await client.post(
                    self.settings.email_api_url, json=message, headers=headers
                )

        if response.status_code >= 400:
            error = f"Email provider error {response.status_code}: {response.text}"
            if response.status_code < 500 and response.status_code != 429:
                raise PermanentJobError(error)
            raise RuntimeError(error)

        logger.info(
            "Email sent",
            extra={"job_id": context.job_id, "subject": message["subject"]},
        )
        return {"status": "sent", "provider_status": response.status_code}


class RealtimePushHandler:
    """
    Acknowledges realtime events.

    Fan-out to connected clients is done by the application's streaming layer,
    which reads the outbox directly; the job records that the event was relayed.
    """

    async def handle(
        self,
        payload: dict[str, Any],
        context: JobContext,
    ) -> dict[str, Any] | None:
        if context.dry_run:
            logger.info(
                "Dry run: realtime push",
                extra={
                    "job_id": context.job_id,
                    "event_key": payload.get("event_key"),
                    "audience_type": payload.get("audience_type"),
                    "audience_id": payload.get("audience_id"),
                },
            )
        return {"status": "acknowledged", "event_id": payload.get("event_id")}


class NoopHandler:
    """Completes immediately."""

    async def handle(
        self,
        payload: dict[str, Any],
        context: JobContext,
    ) -> dict[str, Any] | None:
        return None
