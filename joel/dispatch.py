"""Per-platform, concurrency-limited fan-out of notification tasks."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Sequence

from .models import MessageApp, NotificationTask

logger = logging.getLogger(__name__)

TaskHandler = Callable[[NotificationTask], Awaitable[object]]

DEFAULT_CONCURRENCY = 1


def partition_tasks(
    tasks: Sequence[NotificationTask],
) -> Dict[MessageApp, List[NotificationTask]]:
    """Split tasks by platform, largest digests first within each platform.

    The sort is stable, so tasks with the same record count keep their order.
    """
    partitions: Dict[MessageApp, List[NotificationTask]] = {}
    for task in tasks:
        partitions.setdefault(task.message_app, []).append(task)
    for app_tasks in partitions.values():
        app_tasks.sort(key=lambda task: task.record_count, reverse=True)
    return partitions


async def _run_partition(
    message_app: MessageApp,
    tasks: List[NotificationTask],
    handler: TaskHandler,
    limit: int,
) -> List[BaseException]:
    semaphore = asyncio.Semaphore(limit)

    async def run_one(task: NotificationTask) -> None:
        async with semaphore:
            await handler(task)

    # Tasks are created in sorted order and the semaphore wakes waiters FIFO,
    # so handler invocations start in that order.
    results = await asyncio.gather(
        *(run_one(task) for task in tasks), return_exceptions=True
    )
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        logger.error(
            f"{message_app.value}: {len(failures)} of {len(tasks)} notification tasks failed"
        )
    return failures


async def dispatch_tasks_to_message_apps(
    tasks: Sequence[NotificationTask],
    handler: TaskHandler,
    concurrency_limits: Mapping[MessageApp, int],
) -> None:
    """Run handler for every task, bounded per platform.

    Platforms run concurrently with each other. Every task is allowed to
    settle before the first failure, if any, is re-raised.
    """
    if not tasks:
        return

    partitions = partition_tasks(tasks)
    for message_app, app_tasks in partitions.items():
        logger.info(
            f"{message_app.value}: dispatching {len(app_tasks)} notification tasks "
            f"(concurrency {concurrency_limits.get(message_app, DEFAULT_CONCURRENCY)})"
        )

    results = await asyncio.gather(
        *(
            _run_partition(
                message_app,
                app_tasks,
                handler,
                max(1, concurrency_limits.get(message_app, DEFAULT_CONCURRENCY)),
            )
            for message_app, app_tasks in partitions.items()
        )
    )

    for failures in results:
        if failures:
            raise failures[0]
