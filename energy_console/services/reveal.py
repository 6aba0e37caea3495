# energy_console/services/reveal.py
"""In-process reveal permissions for calculator sessions.

Delayed grants are asyncio timers supervised through ``background.spawn``.
They live only as long as the process and the session: nothing here is
persisted, and tearing a session down cancels its pending timers. Sessions
that stay idle longer than the TTL are torn down by a sweep that piggybacks
on ``start`` and ``schedule``, so abandoned visits do not pile up.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from energy_console.background import spawn
from energy_console.services.completion import RevealMode, RevealTiming
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

RevealCallback = Callable[[str, str], Union[None, Awaitable[None]]]


@dataclass
class _SessionState:
    last_seen: float
    revealed: Set[str] = field(default_factory=set)
    timers: Dict[str, asyncio.Task] = field(default_factory=dict)


class RevealScheduler:
    def __init__(self, ttl_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._sessions: Dict[str, _SessionState] = {}
        self._ttl = ttl_seconds
        self._clock = clock
        self._last_sweep = clock()

    def _state(self, session_id: str) -> _SessionState:
        now = self._clock()
        state = self._sessions.get(session_id)
        if state is None:
            state = self._sessions[session_id] = _SessionState(last_seen=now)
        state.last_seen = now
        return state

    def sweep(self) -> int:
        """Tear down sessions idle for longer than the TTL; returns how many."""
        if not self._ttl:
            return 0
        now = self._clock()
        self._last_sweep = now
        expired = [
            sid for sid, st in self._sessions.items()
            if now - st.last_seen > self._ttl and all(t.done() for t in st.timers.values())
        ]
        for sid in expired:
            self.teardown(sid)
        if expired:
            logger.info("Evicted %d idle reveal sessions", len(expired))
        return len(expired)

    def _maybe_sweep(self) -> None:
        if self._ttl and self._clock() - self._last_sweep >= min(self._ttl, 60):
            self.sweep()

    def session_count(self) -> int:
        return len(self._sessions)

    def start(self, session_id: str, first_card_id: Optional[str]) -> None:
        """Begin a session with only the first card revealed."""
        self._maybe_sweep()
        self.teardown(session_id)
        if first_card_id:
            self.grant(session_id, first_card_id)

    def grant(self, session_id: str, card_id: str) -> None:
        state = self._state(session_id)
        state.revealed.add(card_id)
        timer = state.timers.pop(card_id, None)
        if timer is not None and not timer.done():
            timer.cancel()

    def schedule(
        self,
        session_id: str,
        card_id: str,
        timing: RevealTiming,
        callback: Optional[RevealCallback] = None,
    ) -> Optional[asyncio.Task]:
        """Grant reveal permission now or after the timing's delay.

        Returns the timer task for a delayed grant. Scheduling a card that is
        already revealed or already waiting is a no-op.
        """
        self._maybe_sweep()
        state = self._state(session_id)
        if card_id in state.revealed:
            return None
        if timing.timing is RevealMode.immediately or timing.delay_seconds <= 0:
            self.grant(session_id, card_id)
            return None
        existing = state.timers.get(card_id)
        if existing is not None and not existing.done():
            return existing

        async def _fire() -> None:
            await asyncio.sleep(timing.delay_seconds)
            # a teardown may have replaced the state while we slept
            if self._sessions.get(session_id) is not state:
                return
            state.timers.pop(card_id, None)
            state.revealed.add(card_id)
            logger.debug("Delayed reveal of card %s for session %s", card_id, session_id)
            if callback is not None:
                result = callback(session_id, card_id)
                if asyncio.iscoroutine(result):
                    await result

        task = spawn(_fire(), name=f"reveal:{session_id}:{card_id}")
        state.timers[card_id] = task
        return task

    def teardown(self, session_id: str) -> None:
        state = self._sessions.pop(session_id, None)
        if state is None:
            return
        for task in state.timers.values():
            if not task.done():
                task.cancel()
        if state.timers:
            logger.debug("Cancelled %d pending reveals for session %s", len(state.timers), session_id)

    def revealed(self, session_id: str) -> Set[str]:
        state = self._sessions.get(session_id)
        if state is not None:
            state.last_seen = self._clock()
        return set(state.revealed) if state else set()

    def pending(self, session_id: str) -> Set[str]:
        state = self._sessions.get(session_id)
        if state is None:
            return set()
        return {card_id for card_id, task in state.timers.items() if not task.done()}

    def is_revealed(self, session_id: str, card_id: str) -> bool:
        return card_id in self.revealed(session_id)


# process-wide scheduler used by the calculator router
reveal_scheduler = RevealScheduler(ttl_seconds=settings.REVEAL_SESSION_TTL_SECONDS)
