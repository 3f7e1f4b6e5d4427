"""Outbound webhook delivery of detected database changes.

Each change becomes one JSON envelope POSTed to the configured endpoint with
the shared secret in ``X-Webhook-Secret``. Delivery failures are logged and
never propagate to the monitor that produced the change.
"""

from typing import Any

import httpx
from loguru import logger

from changeloop.core.config.webhook_config import WebhookConfig
from changeloop.core.documents import strip_internal_fields, to_jsonable
from changeloop.core.exceptions import ConfigurationError
from changeloop.core.subscriptions import Subscription
from changeloop.core.types import WatchedChange, utc_now

ENVELOPE_SOURCE = "mongodb-change-stream"


class WebhookRelay:
    """Forwards ``WatchedChange`` records to an external webhook endpoint."""

    def __init__(
        self,
        config: WebhookConfig,
        database: str,
        subject_field: str = "startup_id",
        client: httpx.AsyncClient | None = None,
    ):
        if not config.is_configured():
            raise ConfigurationError("WebhookRelay requires a webhook url")
        self.config = config
        self.database = database
        self.subject_field = subject_field
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)
        self.sent_count = 0
        self.failed_count = 0

    def attach(self, monitor: Any) -> Subscription:
        """Relay every change detected by ``monitor``."""
        return monitor.subscribe(self.relay)

    def build_envelope(self, change: WatchedChange) -> dict[str, Any]:
        document = change.data if isinstance(change.data, dict) else {}
        category = change.category.value
        operation = change.operation or change.kind.value
        return {
            "event": f"mongodb.{category}.{operation}",
            "timestamp": utc_now().isoformat(),
            "data": {
                "type": category,
                "collection": change.collection,
                "operation": operation,
                "documentId": change.document_id,
                "subjectId": str(document.get(self.subject_field) or "unknown"),
                "document": to_jsonable(strip_internal_fields(document)),
            },
            "metadata": {
                "source": ENVELOPE_SOURCE,
                "database": self.database,
                "collection": change.collection,
            },
        }

    async def relay(self, change: WatchedChange) -> bool:
        return await self.send(self.build_envelope(change))

    async def send(self, envelope: dict[str, Any]) -> bool:
        """POST one envelope; returns whether the endpoint accepted it."""
        headers = self.config.headers_for(envelope["event"], envelope["timestamp"])
        try:
            response = await self._client.post(
                self.config.url, json=envelope, headers=headers
            )
        except httpx.HTTPError as e:
            self.failed_count += 1
            logger.error(f"Failed to send webhook {envelope['event']}: {e}")
            return False

        if response.is_success:
            self.sent_count += 1
            logger.info(f"Webhook sent for {envelope['event']}")
            return True

        self.failed_count += 1
        logger.error(
            f"Webhook failed for {envelope['event']}: "
            f"{response.status_code} {response.text[:200]}"
        )
        return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
