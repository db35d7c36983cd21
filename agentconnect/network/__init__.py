"""Peer networking: outbound transport, presence tracking, group broadcast, and inbound handlers."""
