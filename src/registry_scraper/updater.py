"""Periodic re-scraping of known repositories."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from .core.registry_client import RegistryClient
from .exceptions import RegistryError, RegistryScraperError
from .reference import parse_reference
from .registry import Repository
from .scraper import Scraper
from .store import Store
from .store.models import utcnow

T = TypeVar("T")

ClientFactory = Callable[[str], RegistryClient]


@dataclass(frozen=True)
class ScrapeGroupTask:
    """Images of one repository, scraped in order by a single worker."""

    repository: str
    images: tuple[str, ...] = field(default_factory=tuple)


@dataclass
class RunMetrics:
    """Outcome of one updater run."""

    duration: float = 0.0  # seconds
    completed_at: Optional[datetime] = None
    fail_count: int = 0
    groups: int = 0


MetricsSink = Callable[[RunMetrics], None]


class WorkerPool(Generic[T]):
    """Fixed number of asyncio workers draining a queue of tasks.

    ``dispatch`` returns once every task has been handled. ``max_active``
    records the highest number of handlers that ran at the same time.
    """

    def __init__(self, worker_count: int, logger: Optional[logging.Logger] = None) -> None:
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        self.worker_count = worker_count
        self.logger = logger or logging.getLogger(__name__)
        self.active = 0
        self.max_active = 0
        self.errors = 0

    async def dispatch(
        self, tasks: Iterable[T], handler: Callable[[T], Awaitable[None]]
    ) -> None:
        queue: "asyncio.Queue[T]" = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        self.errors = 0
        workers = [
            asyncio.create_task(self._work(queue, handler))
            for _ in range(min(self.worker_count, queue.qsize()))
        ]
        await queue.join()
        await asyncio.gather(*workers)

    async def _work(self, queue: "asyncio.Queue[T]", handler: Callable[[T], Awaitable[None]]) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                await handler(task)
            except Exception:
                self.errors += 1
                self.logger.exception("Worker failed to handle %r", task)
            finally:
                self.active -= 1
                queue.task_done()


class LatestImageUpdater:
    """Re-checks the latest tag of every known version family.

    Latest tags are grouped by repository. Each group is handled by one
    worker with one registry session; groups run concurrently up to
    ``worker_count``.
    """

    def __init__(
        self,
        scraper: Scraper,
        store: Store,
        client_factory: ClientFactory,
        worker_count: int = 1,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.scraper = scraper
        self.store = store
        self.client_factory = client_factory
        self.logger = logger or logging.getLogger(__name__)
        self.pool: WorkerPool[ScrapeGroupTask] = WorkerPool(worker_count, self.logger)
        self.metrics = metrics
        self._failures = 0

    def group_latest_tags(self) -> list[ScrapeGroupTask]:
        """Build one task per repository from the tags flagged latest.

        Raises:
            StoreError, DoesNotExist: If the tags or their images cannot be read
        """
        grouped: dict[str, list[str]] = {}
        for tag in self.store.tags.list(is_latest=True):
            image = self.store.images.get(id=tag.image_id)
            grouped.setdefault(image.name, []).append(f"{image.name}:{tag.name}")

        return [ScrapeGroupTask(name, tuple(images)) for name, images in grouped.items()]

    async def run(self) -> RunMetrics:
        """Scrape the latest image of every group and report run metrics.

        Individual failures are logged and counted. Only reading the latest
        tags from the store can make the run itself fail.
        """
        start = time.monotonic()
        self._failures = 0
        tasks = self.group_latest_tags()
        self.logger.debug("Dispatching %d repository groups", len(tasks))

        await self.pool.dispatch(tasks, self.process_group)

        metrics = RunMetrics(
            duration=time.monotonic() - start,
            completed_at=utcnow(),
            fail_count=self._failures + self.pool.errors,
            groups=len(tasks),
        )
        if self.metrics is not None:
            self.metrics(metrics)
        self.logger.info(
            "Latest image update finished in %.2fs, %d groups, %d failures",
            metrics.duration,
            metrics.groups,
            metrics.fail_count,
        )
        return metrics

    async def process_group(self, task: ScrapeGroupTask) -> None:
        reference = parse_reference(task.repository)
        async with self.client_factory(reference.domain) as client:
            repository = Repository(client, reference)
            for image_name in task.images:
                self.logger.debug("Scraping latest image for %s", image_name)
                try:
                    tag = parse_reference(image_name).tag
                    await self.scraper.scrape_latest_image(repository.image(tag=tag))
                except (RegistryScraperError, ValueError) as e:
                    self._failures += 1
                    self.logger.error("Unable to scrape latest image of %s: %s", image_name, e)
                except Exception:
                    self._failures += 1
                    self.logger.exception("Unexpected error scraping latest image of %s", image_name)


class AllImagesUpdater:
    """Scrapes every upstream tag of every repository in the store."""

    def __init__(
        self,
        scraper: Scraper,
        store: Store,
        client_factory: ClientFactory,
        metrics: Optional[MetricsSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.scraper = scraper
        self.store = store
        self.client_factory = client_factory
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)

    async def run(self) -> RunMetrics:
        start = time.monotonic()
        failures = 0
        names = self.store.images.names()

        for name in names:
            self.logger.debug("Updating image %s...", name)
            reference = parse_reference(name)
            async with self.client_factory(reference.domain) as client:
                repository = Repository(client, reference)
                try:
                    tags = await repository.tags()
                except RegistryError as e:
                    failures += 1
                    self.logger.error("Unable to list tags of %s: %s", name, e)
                    continue

                for tag in tags:
                    image = repository.image(tag=tag)
                    try:
                        await self.scraper.scrape_image(image)
                        await self.scraper.scrape_latest_image(image)
                    except RegistryScraperError as e:
                        failures += 1
                        self.logger.error("Unable to scrape %s: %s", image, e)
                    except Exception:
                        failures += 1
                        self.logger.exception("Unexpected error scraping %s", image)

        metrics = RunMetrics(
            duration=time.monotonic() - start,
            completed_at=utcnow(),
            fail_count=failures,
            groups=len(names),
        )
        if self.metrics is not None:
            self.metrics(metrics)
        self.logger.info(
            "All images update finished in %.2fs, %d repositories, %d failures",
            metrics.duration,
            metrics.groups,
            metrics.fail_count,
        )
        return metrics
