"""Per-project concurrency limit for upstream analytics queries."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProjectQueryQueue:
    """
    Concurrency-limited queue of upstream queries, keyed by project.

    Amplitude enforces its query-cost budget per project, so every query for
    a project runs through that project's semaphore. With the default limit of
    1 a multi-quarter fetch runs strictly one query at a time, in submission
    order, while other projects proceed independently.

    Usage:
        queue = ProjectQueryQueue(max_concurrent=1)

        results = await queue.map(project_id, [
            lambda: gateway.fetch("/events/segmentation", q1_params),
            lambda: gateway.fetch("/events/segmentation", q2_params),
        ])
    """

    def __init__(self, max_concurrent: int = 1):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._in_flight: dict[str, int] = {}

    def _get_semaphore(self, project_id: str) -> asyncio.Semaphore:
        """Get or create semaphore for project."""
        if project_id not in self._semaphores:
            self._semaphores[project_id] = asyncio.Semaphore(self.max_concurrent)
        return self._semaphores[project_id]

    @asynccontextmanager
    async def slot(self, project_id: str) -> AsyncIterator[None]:
        """Hold one of the project's query slots for the duration of the block."""
        async with self._get_semaphore(project_id):
            self._in_flight[project_id] = self._in_flight.get(project_id, 0) + 1
            try:
                yield
            finally:
                self._in_flight[project_id] -= 1

    async def run(self, project_id: str, query: Callable[[], Awaitable[T]]) -> T:
        """Run one query once a slot is free."""
        async with self.slot(project_id):
            return await query()

    async def map(
        self,
        project_id: str,
        queries: Iterable[Callable[[], Awaitable[T]]],
    ) -> list[T]:
        """
        Submit several queries and return their results in submission order.

        Every submitted query runs to completion (no cancellation); afterwards
        the first failure in submission order is raised.
        """
        pending = [self.run(project_id, query) for query in queries]
        logger.debug(
            "project_queries_submitted",
            project_id=project_id,
            count=len(pending),
            max_concurrent=self.max_concurrent,
        )
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    def in_flight(self, project_id: str) -> int:
        """Queries currently holding a slot for the project."""
        return self._in_flight.get(project_id, 0)
