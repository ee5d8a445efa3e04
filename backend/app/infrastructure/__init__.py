"""Infrastructure Layer — database engine, logging and the event stream client.

Invariants:
    - External IO (database, WebSocket transport) is wrapped with error mapping
    - Transport failures surface as state transitions, never as crashes

Design Decisions:
    - Resilient wrappers over raw clients (ADR: ExMA single responsibility)
"""
