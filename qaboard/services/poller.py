"""
qaboard.services.poller — Periodic Room Refresh
================================================

There is no push channel; an open room re-reads its questions every few
seconds (5 by default).  Staleness across clients is bounded by this
interval.

A failed refresh is logged and the loop keeps going; the next tick is the
retry.  Nothing else in the core retries.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from qaboard.exceptions import QABoardError

if TYPE_CHECKING:
    from qaboard.models import Question

logger = logging.getLogger(__name__)


class RoomPoller:
    """Background task: fetch → callback → sleep, until stopped."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[Question]]],
        on_update: Callable[[list[Question]], Awaitable[None] | None],
        *,
        interval: float = 5.0,
    ) -> None:
        self._fetch = fetch
        self._on_update = on_update
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh_once(self) -> list[Question]:
        questions = await self._fetch()
        result = self._on_update(questions)
        if inspect.isawaitable(result):
            await result
        return questions

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh_once()
            except QABoardError as exc:
                logger.warning("Room refresh failed: %s", exc.message)
            except Exception:
                logger.exception("Room refresh crashed", extra={"task": "room_poll"})
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
