"""All-of-N join over independently completing coroutines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class BranchJoin:
    """Run named branches concurrently and release once every branch has finished.

    Results are handed back keyed by branch name, so the caller never depends on
    which branch completed first. A join fires at most once. Branches are never
    cancelled: when one fails the others still run to completion, and only then
    is a single failure raised (the first failing branch in the order the
    branches were added). Further failures are logged.
    """

    def __init__(self) -> None:
        self._branches: dict[str, Awaitable[Any]] = {}
        self._fired = False

    def add(self, name: str, branch: Awaitable[Any]) -> None:
        if self._fired:
            raise RuntimeError("join already fired")
        if name in self._branches:
            raise ValueError(f"duplicate branch name: {name}")
        self._branches[name] = branch

    async def wait(self) -> dict[str, Any]:
        """Wait for all branches and return their results by name."""
        if self._fired:
            raise RuntimeError("join already fired")
        self._fired = True
        if not self._branches:
            return {}

        tasks = {name: asyncio.ensure_future(branch) for name, branch in self._branches.items()}
        await asyncio.wait(tasks.values(), return_when=asyncio.ALL_COMPLETED)

        failures = [
            (name, task.exception()) for name, task in tasks.items() if task.exception() is not None
        ]
        if failures:
            name, exc = failures[0]
            for other_name, other_exc in failures[1:]:
                logger.warning("join branch %s also failed: %s", other_name, other_exc)
            logger.info("join branch %s failed: %s", name, exc)
            raise exc
        return {name: task.result() for name, task in tasks.items()}
