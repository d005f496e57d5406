"""Dispatch WebSocket consumer: receives ride lifecycle events."""

import logging
from typing import Dict, Any

from .base import BaseConsumer
from realtime.registry import Peer, get_connection_registry

logger = logging.getLogger(__name__)


class DispatchConsumer(BaseConsumer):
    """
    WebSocket consumer for passengers and drivers.

    Registers the connection with the connection registry on connect and
    removes it on disconnect. Ride events arrive over the channel layer as
    `dispatch.event` messages and are forwarded unchanged; `dispatch.close`
    closes the socket after the registry dropped it.
    """

    async def on_connect(self):
        self.peer = Peer(channel_name=self.channel_name, user_id=self.user_id, role=self.role)
        await get_connection_registry().register(self.peer)
        logger.info("User %s (%s) connected to dispatch", self.user_id, self.role)
        await super().on_connect()

    async def on_disconnect(self, close_code):
        peer = getattr(self, "peer", None)
        if peer is not None:
            await get_connection_registry().unregister(peer)
            logger.info("User %s disconnected from dispatch (code=%s)", self.user_id, close_code)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Event Handlers (from channel layer) ----------------------

    async def dispatch_event(self, message):
        """Forward a ride lifecycle event to the client."""
        await self.send_json(message["event"])

    async def dispatch_close(self, message):
        """The registry dropped this connection; close it so the client reconnects."""
        await self.close(code=4000)
