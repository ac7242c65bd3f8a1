"""Outbound delivery adapters (push notifications, SMTP email)."""
