"""Shared runtime helpers."""

from agent_nightlies.utils.concurrency import CancellationToken

__all__ = ["CancellationToken"]
