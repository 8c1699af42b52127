"""Listens for change events and dispatches them to handlers."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import asyncpg

from config import settings
from config.constants import (
    EVENT_COMMISSION_SUMMARY_CHANGED,
    EVENT_ORDER_STATUS_CHANGED,
    EVENT_WITHDRAWAL_STATUS_CHANGED,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class ChangeListener:
    """
    Holds a dedicated connection LISTENing on the notification channel.

    Reconnects with exponential backoff when the connection drops.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        channel: Optional[str] = None,
        base_reconnect_delay: Optional[float] = None,
        max_reconnect_delay: Optional[float] = None,
    ):
        self.database_url = database_url or settings.database_url
        self.channel = channel or settings.notification_channel
        self.base_reconnect_delay = base_reconnect_delay or settings.listener_reconnect_delay_seconds
        self.max_reconnect_delay = max_reconnect_delay or settings.listener_max_reconnect_delay_seconds

        self._handlers: Dict[str, List[EventHandler]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._connection_lost: Optional[asyncio.Event] = None
        self.reconnect_attempts = 0
        self.is_connected = False

    def register_handler(self, event: str, handler: EventHandler) -> None:
        """Call ``handler(payload)`` for every ``event`` received."""
        self._handlers.setdefault(event, []).append(handler)
        logger.info(f"Registered handler for {event}")

    async def start(self) -> None:
        """Start listening in the background."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._listen_loop(), name=f"listen_{self.channel}")
        logger.info(f"Change listener starting on channel {self.channel}")

    async def stop(self) -> None:
        """Stop listening and wait for in-flight handlers."""
        self._running = False
        if self._connection_lost is not None:
            self._connection_lost.set()

        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        logger.info("Change listener stopped")

    async def dispatch(self, raw_payload: str) -> None:
        """Decode one notification and run its handlers."""
        try:
            data = json.loads(raw_payload)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON on {self.channel}: {raw_payload[:100]}")
            return

        event = data.get("event")
        for handler in self._handlers.get(event, []):
            try:
                await handler(data)
            except Exception as e:
                logger.error(f"Handler error for {event}: {e}", exc_info=True)

    def _on_notification(self, connection, pid: int, channel: str, payload: str) -> None:
        task = asyncio.create_task(self.dispatch(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_termination(self, connection) -> None:
        if self._connection_lost is not None:
            self._connection_lost.set()

    async def _listen_loop(self) -> None:
        while self._running:
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Listener on {self.channel} error: {e}")
            finally:
                self.is_connected = False

            if not self._running:
                break

            delay = min(
                self.base_reconnect_delay * (2 ** self.reconnect_attempts),
                self.max_reconnect_delay,
            )
            self.reconnect_attempts += 1
            logger.info(f"Reconnecting listener in {delay:.1f}s (attempt {self.reconnect_attempts})")
            await asyncio.sleep(delay)

    async def _connect_and_listen(self) -> None:
        conn = await asyncpg.connect(self.database_url)
        self._connection_lost = asyncio.Event()
        try:
            conn.add_termination_listener(self._on_termination)
            await conn.add_listener(self.channel, self._on_notification)
            self.is_connected = True
            self.reconnect_attempts = 0
            logger.info(f"Listening on {self.channel}")

            await self._connection_lost.wait()
        finally:
            if not conn.is_closed():
                await conn.close()


class SummaryRefresher:
    """
    Recomputes an agent's commission summary whenever a change event names it.

    The refreshed summary goes to ``on_refresh``; events never carry balances.
    """

    EVENTS = (
        EVENT_ORDER_STATUS_CHANGED,
        EVENT_COMMISSION_SUMMARY_CHANGED,
        EVENT_WITHDRAWAL_STATUS_CHANGED,
    )

    def __init__(self, engine, on_refresh: Callable[[Any], Awaitable[None]]):
        self.engine = engine
        self.on_refresh = on_refresh

    def attach(self, listener: ChangeListener) -> None:
        for event in self.EVENTS:
            listener.register_handler(event, self.handle_event)

    async def handle_event(self, payload: Dict[str, Any]) -> None:
        agent_id = payload.get("agent_id")
        if agent_id is None:
            return

        summary = await self.engine.get_commission_summary(int(agent_id))
        await self.on_refresh(summary)
