"""End-to-end scenario tests for idempotent execution.

Each scenario drives ``execute``, the decorators or the ASGI middleware
against the in-memory store and checks one aspect of exactly-once
behavior.
"""
