"""
Connection registry for the dispatch WebSocket endpoint.

Every open dispatch connection is registered here with the identity it
authenticated as. Broadcasts take a snapshot of the peer set under the
lock, release it, then deliver to each peer concurrently with a bounded
timeout. A peer whose send fails or times out is unregistered and asked
to close its socket; the others are unaffected. Delivery is best-effort
and at-most-once: there is no queue or replay for peers that are not
connected at broadcast time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer
from django.conf import settings

from services.exceptions import DeliveryFailure

logger = logging.getLogger(__name__)

# Channel-layer message types; routed to DispatchConsumer.dispatch_event and .dispatch_close
DISPATCH_MESSAGE_TYPE = "dispatch.event"
CLOSE_MESSAGE_TYPE = "dispatch.close"
DEFAULT_SEND_TIMEOUT = 2.0


@dataclass(frozen=True)
class Peer:
    """A live connection and the identity bound to it at registration."""
    channel_name: str
    user_id: Optional[int] = None
    role: Optional[str] = None

    @property
    def is_driver(self) -> bool:
        return self.role == "driver"


Sender = Callable[[str, Dict[str, Any]], Awaitable[None]]
Audience = Callable[[Peer], bool]


async def channel_layer_sender(channel_name: str, message: Dict[str, Any]) -> None:
    """Default sender: push the message onto the peer's channel-layer channel."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        raise DeliveryFailure("No channel layer configured")
    await channel_layer.send(channel_name, message)


def _configured_timeout() -> float:
    return float(getattr(settings, "RIDELIVE", {}).get("SEND_TIMEOUT", DEFAULT_SEND_TIMEOUT))


class ConnectionRegistry:
    """Mutex-guarded set of live peers keyed by channel name."""

    def __init__(self, sender: Optional[Sender] = None, send_timeout: Optional[float] = None):
        self._peers: Dict[str, Peer] = {}
        self._lock = asyncio.Lock()
        self._sender = sender or channel_layer_sender
        self.send_timeout = send_timeout if send_timeout is not None else _configured_timeout()

    async def register(self, peer: Peer) -> None:
        async with self._lock:
            self._peers[peer.channel_name] = peer
        logger.debug("Registered peer %s (user=%s, role=%s)", peer.channel_name, peer.user_id, peer.role)

    async def unregister(self, peer: Union[Peer, str]) -> bool:
        """Remove a peer. Returns False if it was not registered."""
        channel_name = peer.channel_name if isinstance(peer, Peer) else peer
        async with self._lock:
            removed = self._peers.pop(channel_name, None)
        if removed is not None:
            logger.debug("Unregistered peer %s", channel_name)
        return removed is not None

    async def snapshot(self) -> List[Peer]:
        async with self._lock:
            return list(self._peers.values())

    async def broadcast(
        self,
        event: Dict[str, Any],
        excluding: Optional[Union[Peer, str]] = None,
        audience: Optional[Audience] = None,
    ) -> int:
        """
        Deliver `event` to every registered peer except `excluding`.

        Args:
            event: JSON-serialisable event payload
            excluding: peer (or channel name) to skip
            audience: optional predicate selecting interested peers

        Returns:
            Number of peers the event was delivered to
        """
        skip = excluding.channel_name if isinstance(excluding, Peer) else excluding

        async with self._lock:
            targets = [
                peer for peer in self._peers.values()
                if peer.channel_name != skip and (audience is None or audience(peer))
            ]

        if not targets:
            return 0

        message = {"type": DISPATCH_MESSAGE_TYPE, "event": event}
        results = await asyncio.gather(*(self._deliver_or_drop(peer, message) for peer in targets))
        delivered = sum(1 for ok in results if ok)

        logger.info(
            "Broadcast %s: delivered=%d dropped=%d",
            event.get("type"), delivered, len(targets) - delivered,
        )
        return delivered

    async def _deliver_or_drop(self, peer: Peer, message: Dict[str, Any]) -> bool:
        try:
            await self._deliver(peer, message)
        except DeliveryFailure as exc:
            logger.warning("Dropping peer %s (user=%s): %s", peer.channel_name, peer.user_id, exc)
            await self.unregister(peer)
            await self._request_close(peer)
            return False
        return True

    async def _request_close(self, peer: Peer) -> None:
        """Ask a dropped peer's consumer to close its socket so the client reconnects."""
        try:
            await self._deliver(peer, {"type": CLOSE_MESSAGE_TYPE})
        except DeliveryFailure as exc:
            logger.info("Could not ask dropped peer %s to close: %s", peer.channel_name, exc)

    async def _deliver(self, peer: Peer, message: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(self._sender(peer.channel_name, message), timeout=self.send_timeout)
        except DeliveryFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise DeliveryFailure(f"send timed out after {self.send_timeout}s") from exc
        except ChannelFull as exc:
            raise DeliveryFailure("channel full") from exc
        except Exception as exc:
            raise DeliveryFailure(str(exc) or exc.__class__.__name__) from exc


_registry: Optional[ConnectionRegistry] = None


def get_connection_registry() -> ConnectionRegistry:
    """Process-wide registry shared by consumers and the dispatch coordinator."""
    global _registry
    if _registry is None:
        _registry = ConnectionRegistry()
    return _registry
