"""Publishes change events on the notification channel."""

import json
import logging
from typing import Any, Dict, Optional

import asyncpg

from config import settings

logger = logging.getLogger(__name__)


def build_payload(event: str, agent_id: int, **fields: Any) -> Dict[str, Any]:
    """Build the JSON body of a change event."""
    payload = {"event": event, "agent_id": agent_id}
    payload.update(fields)
    return payload


class ChangeNotifier:
    """Queues NOTIFY messages on the caller's connection."""

    def __init__(self, channel: Optional[str] = None):
        self.channel = channel or settings.notification_channel

    async def publish(
        self,
        conn: asyncpg.Connection,
        event: str,
        agent_id: int,
        **fields: Any,
    ) -> None:
        """
        Publish an event.

        Must be called on the connection running the mutating transaction;
        PostgreSQL delivers the message on commit and drops it on rollback.
        """
        payload = build_payload(event, agent_id, **fields)
        await conn.execute(
            "SELECT pg_notify($1, $2)",
            self.channel,
            json.dumps(payload, default=str),
        )
        logger.debug(f"Queued {event} for agent {agent_id} on {self.channel}")
