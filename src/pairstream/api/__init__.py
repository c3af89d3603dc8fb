"""Subscriber-facing API: websocket endpoint, health, metrics and logging setup."""
