"""Broadcast relay -- live transcript fan-out to connected viewers.

Runs as its own process. Provides ConnectionRegistry (the viewer set),
create_relay_app (WebSocket subscribe + POST /broadcast), and RelayClient
used by the API process to push payloads.
"""
