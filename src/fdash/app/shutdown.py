"""Coordinated shutdown of every session task."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from fdash.app.session import SessionId

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Broadcasts cancellation and waits, boundedly, for session tasks.

    Each session task watches ``shutdown_event`` and runs its supervisor's
    staged shutdown when it fires. Tasks are awaited concurrently, so the
    total wait is bounded by the slowest session rather than the sum.
    """

    def __init__(
        self,
        *,
        shutdown_event: asyncio.Event,
        tasks: Mapping[SessionId, asyncio.Task[None]],
        join_timeout: float = 2.0,
    ) -> None:
        self._shutdown_event = shutdown_event
        self._tasks = tasks
        self._join_timeout = join_timeout

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown_event.is_set()

    async def shutdown(self) -> list[SessionId]:
        """Signal every session and wait for them.

        Returns:
            Ids of sessions that did not finish within the join timeout.
            They are left to the process's own exit handling.
        """
        self._shutdown_event.set()
        pending = dict(self._tasks)
        if not pending:
            logger.info("shutdown: no session tasks running")
            return []

        logger.info("shutdown: waiting for %d session task(s)", len(pending))
        results = await asyncio.gather(
            *(self._join(session_id, task) for session_id, task in pending.items()),
        )
        orphaned = [session_id for session_id, finished in zip(pending, results) if not finished]
        if orphaned:
            logger.warning("shutdown: %d session(s) orphaned: %s", len(orphaned), orphaned)
        else:
            logger.info("shutdown: all session tasks finished")
        return orphaned

    async def _join(self, session_id: SessionId, task: asyncio.Task[None]) -> bool:
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._join_timeout)
        except asyncio.TimeoutError:
            logger.warning("session %s did not stop within %gs", session_id, self._join_timeout)
            return False
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        except Exception as exc:
            logger.error("session %s task failed during shutdown: %s", session_id, exc)
        return True
