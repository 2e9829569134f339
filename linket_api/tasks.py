"""Detached side effects (scan events, click counters, cache purges).

Side effects run after the HTTP response has been sent, through the
response's background tasks, so a redirect or claim never waits on them.
Each job has its own error boundary and a bounded timeout; failures are
logged and never reach the caller.

Tests observe completion by registering a listener:

    runner.add_listener(lambda name, outcome: seen.append((name, outcome)))
"""

import asyncio
import inspect
import logging
from typing import Any, Callable

from fastapi import BackgroundTasks, Request

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"
OUTCOME_TIMEOUT = "timeout"

Listener = Callable[[str, str], None]


class DetachedTaskRunner:
    """Run fire-and-forget jobs with a timeout and an error boundary."""

    def __init__(self, timeout_seconds: float = 3.0):
        self.timeout_seconds = timeout_seconds
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def schedule(
        self,
        background_tasks: BackgroundTasks,
        name: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """Attach a job to the response's background tasks.

        Args:
            background_tasks: The request's BackgroundTasks
            name: Job name (used in logs and listener callbacks)
            fn: Sync callable (run in a worker thread) or coroutine function
        """
        background_tasks.add_task(self.run, name, fn, *args, **kwargs)

    async def run(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        """Run one job to completion and report its outcome.

        Returns:
            "ok", "error" or "timeout"
        """
        try:
            if inspect.iscoroutinefunction(fn):
                awaitable = fn(*args, **kwargs)
            else:
                awaitable = asyncio.to_thread(fn, *args, **kwargs)
            await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
            outcome = OUTCOME_OK
        except asyncio.TimeoutError:
            outcome = OUTCOME_TIMEOUT
            logger.warning(
                f"Side effect timed out: {name}",
                extra={
                    "event": "side_effect.timeout",
                    "task": name,
                    "timeout_seconds": self.timeout_seconds,
                },
            )
        except Exception as e:
            outcome = OUTCOME_ERROR
            logger.warning(
                f"Side effect failed: {name}: {e}",
                extra={"event": "side_effect.failed", "task": name},
                exc_info=True,
            )

        self._notify(name, outcome)
        return outcome

    def _notify(self, name: str, outcome: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(name, outcome)
            except Exception as e:
                logger.warning(
                    f"Side effect listener failed: {e}",
                    extra={"event": "side_effect.listener_failed", "task": name},
                )


def get_task_runner(request: Request) -> DetachedTaskRunner:
    """Runner stored on app.state (replaceable in tests)."""
    runner = getattr(request.app.state, "task_runner", None)
    if runner is None:
        runner = DetachedTaskRunner()
        request.app.state.task_runner = runner
    return runner
