"""Core logic for idempotent execution.

This package contains:
- Handler: the reservation state machine and bounded retry loop
- Replay: conversion between HTTP responses and stored results
- Cleanup: background purge of expired records

The core is framework-agnostic; decorators and the ASGI adapter wrap it.
"""

from idempotent_execution.core.handler import IdempotencyHandler, execute

__all__ = ["IdempotencyHandler", "execute"]
