"""Dispatch coordinator and realtime event payloads."""
