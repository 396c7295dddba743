"""Async helpers for Celery tasks.

Celery tasks are synchronous; every task body that touches the async
database layer or the provider adapters goes through ``run_async``.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """
    Run a coroutine to completion from synchronous code.

    Uses a fresh event loop. When called from a thread that already runs a
    loop (eager tasks inside an async test or server), the coroutine is
    executed on a short-lived worker thread instead.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    logger.debug("Event loop already running, executing coroutine in worker thread")
    with ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coro).result()
