"""
Cooperative cancellation for a running rollout.

In-flight host actions are never interrupted; machines check the token
between transitions and while backing off.
"""

from __future__ import annotations
import asyncio
from typing import Optional


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or "cancellation requested"

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if woken by cancellation."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
