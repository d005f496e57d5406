"""
Notification helpers for publishing dispatch events to connected clients.

Sync code (views, services) publishes through `publish_event`; consumers and
other async code can await `publish_event_async` directly. Publishing never
raises: a failed fan-out is logged and reported as zero deliveries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync

from .registry import Audience, get_connection_registry

logger = logging.getLogger(__name__)


async def publish_event_async(event: Dict[str, Any], audience: Optional[Audience] = None) -> int:
    try:
        return await get_connection_registry().broadcast(event, audience=audience)
    except Exception:
        logger.exception("Failed to publish %s event", event.get("type"))
        return 0


def publish_event(event: Dict[str, Any], audience: Optional[Audience] = None) -> int:
    """Broadcast `event` to interested live connections from synchronous code."""
    return async_to_sync(publish_event_async)(event, audience)
