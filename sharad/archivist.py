from __future__ import annotations

import asyncio
import contextlib
import logging

from sharad.agents.summarizer import Summarizer
from sharad.core.messages import Message, MessageLog
from sharad.models import ArchivistSummary

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_SECTION = 12


def bound_summary(summary: ArchivistSummary, *, max_items: int = MAX_ITEMS_PER_SECTION, max_chars: int) -> ArchivistSummary:
    """Cap every section at `max_items` (newest kept) and the rendering at `max_chars`."""

    bounded = summary.model_copy(
        update={
            "world_facts": list(summary.world_facts[-max_items:]),
            "memories": list(summary.memories[-max_items:]),
            "story_leads": list(summary.story_leads[-max_items:]),
        }
    )
    while len(bounded.render()) > max_chars:
        sections = [bounded.world_facts, bounded.memories, bounded.story_leads]
        longest = max(sections, key=lambda s: sum(len(i) for i in s))
        if not longest:
            break
        longest.pop(0)
    return bounded


class ContextArchivist:
    """Background summarizer for one session's message log.

    Runs independently of turns: every append wakes the worker, appends that
    arrive while a run is in flight coalesce into a single follow-up run, and
    each run covers exactly the messages present when it started. The archivist
    never reads or writes the game state.

    Listeners are invoked on the event loop thread, so `_on_append` only touches
    asyncio primitives.
    """

    def __init__(
        self,
        *,
        log: MessageLog,
        summarizer: Summarizer,
        max_chars: int = 4_000,
        initial: ArchivistSummary | None = None,
    ) -> None:
        self._log = log
        self._summarizer = summarizer
        self._max_chars = max_chars
        self._summary = initial
        self._wake = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task[None] | None = None
        self.failures = 0

    @property
    def summary(self) -> ArchivistSummary | None:
        return self._summary

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._log.subscribe(self._on_append)
        self._task = asyncio.create_task(self._worker(), name="context-archivist")
        # Catch up on history restored from a save.
        covered = self._summary.covers_through if self._summary else 0
        if len(self._log) > covered:
            self._on_append(None)

    def _on_append(self, _message: Message | None) -> None:
        self._idle.clear()
        self._wake.set()

    async def _worker(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            await self._run_once()
            if not self._wake.is_set():
                self._idle.set()

    async def _run_once(self) -> None:
        upto = len(self._log)
        covered = self._summary.covers_through if self._summary else 0
        if upto <= covered:
            return

        new_messages = self._log.snapshot(upto)[covered:]
        try:
            fresh = await self._summarizer.summarize(
                previous=self._summary,
                messages=new_messages,
                max_chars=self._max_chars,
            )
        except Exception:
            self.failures += 1
            logger.exception("Archivist summary failed; keeping previous summary")
            return

        bounded = bound_summary(fresh, max_chars=self._max_chars)
        self._summary = bounded.model_copy(update={"covers_through": upto})
        logger.debug("Archivist summary now covers %d messages", upto)

    async def wait_idle(self) -> None:
        if not self.running:
            return
        await self._idle.wait()

    async def stop(self) -> None:
        self._log.unsubscribe(self._on_append)
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._idle.set()
