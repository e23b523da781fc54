from typing import Callable, List, Optional
import asyncio
import logging

from .retry import RetryPolicy, policy_from_config
from .runner import StageRunner, TickResult
from ..agents.images.agent import ImageAgent
from ..agents.roles.agent import RoleAgent
from ..agents.scenes.agent import SceneAgent
from ..config import SchedulerConfig
from ..database.store import DocumentStore
from ..utils.generation_client import GenerationClient

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Owns the role, scene and image stage loops.

    Stages only talk through the persisted document status, so each loop
    runs as its own task with its own interval.
    """

    def __init__(self, store: DocumentStore, client: GenerationClient,
                 config: Optional[SchedulerConfig] = None,
                 retry_policy_factory: Optional[Callable[[], RetryPolicy]] = None):
        self.store = store
        self.client = client
        self.config = config or SchedulerConfig()
        make_policy = retry_policy_factory or (lambda: policy_from_config(self.config.retry))
        self.runners: List[StageRunner] = [
            StageRunner(RoleAgent(store, client), store, self.config.role_interval_secs, make_policy()),
            StageRunner(SceneAgent(store, client), store, self.config.scene_interval_secs, make_policy()),
            StageRunner(ImageAgent(store, client), store, self.config.image_interval_secs, make_policy()),
        ]
        self._closed = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if not self.config.enabled:
            logger.info("Pipeline scheduler disabled")
            return
        if self.running:
            return
        self._closed.clear()
        self._tasks = [
            asyncio.create_task(runner.run_forever(self._closed), name=f"stage-{runner.name}")
            for runner in self.runners
        ]
        logger.info("Pipeline scheduler started with %d stages", len(self._tasks))

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for in-flight ticks to finish."""
        self._closed.set()
        if self._tasks:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for runner, outcome in zip(self.runners, results):
                if isinstance(outcome, BaseException):
                    logger.error("Stage %s exited with %r", runner.name, outcome)
        self._tasks = []
        logger.info("Pipeline scheduler stopped")

    def request_stop(self) -> None:
        """Ask the loops to exit after their current tick; safe from signal handlers."""
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def run_once(self) -> List[TickResult]:
        """One tick of every stage in pipeline order."""
        return [await runner.run_tick() for runner in self.runners]

    async def __aenter__(self) -> "PipelineScheduler":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
