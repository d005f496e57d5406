"""
Realtime app for WebSocket delivery of ride lifecycle events.

Key Components:
    - registry.py: ConnectionRegistry of live dispatch connections
    - consumers/: DispatchConsumer (registers/unregisters peers)
    - notifications.py: publish_event helpers used by the dispatch coordinator
    - middleware.py: JWT/Cookie authentication middleware for WebSocket connections

Usage:
    from realtime.registry import get_connection_registry
    from realtime.notifications import publish_event
"""
