from dataclasses import dataclass, field
from typing import List, Optional
import asyncio
import logging

from .context import TickContext
from .retry import RetryForever, RetryPolicy
from ..agents.base import Agent
from ..database.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    stage: str
    correlation_id: str
    advanced: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    lost: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.advanced) + len(self.failed) + len(self.lost)


class StageRunner:
    """Poll one input status on a fixed interval and push documents through an agent."""

    def __init__(self, agent: Agent, store: DocumentStore, interval: float,
                 retry_policy: Optional[RetryPolicy] = None):
        self.agent = agent
        self.store = store
        self.interval = interval
        self.retry_policy = retry_policy or RetryForever()
        self.name = agent.name
        self.input_status = agent.input_status
        self.output_status = agent.output_status

    async def run_tick(self) -> TickResult:
        context = TickContext.new(self.name, logger)
        log = context.log
        result = TickResult(stage=self.name, correlation_id=context.correlation_id)

        try:
            documents = await self.store.list_by_status(self.input_status)
        except Exception:
            log.exception("Failed to list %s documents", self.input_status.value)
            return result
        if documents:
            log.info("Found %d %s documents", len(documents), self.input_status.value)

        for document in documents:
            if not self.retry_policy.should_attempt(document.id):
                result.skipped.append(document.id)
                continue
            try:
                await self.agent.process(document, context)
            except Exception:
                log.exception("Stage %s failed for doc: %s", self.name, document.id)
                self.retry_policy.record_failure(document.id)
                result.failed.append(document.id)
                continue

            try:
                moved = await self.store.update_status(document.id, self.output_status,
                                                       expected=self.input_status)
            except Exception:
                log.exception("Failed to update status of doc: %s", document.id)
                self.retry_policy.record_failure(document.id)
                result.failed.append(document.id)
                continue

            self.retry_policy.record_success(document.id)
            if moved:
                log.info("Doc %s moved to %s", document.id, self.output_status.value)
                result.advanced.append(document.id)
            else:
                log.warning("Doc %s left %s before it could be advanced", document.id,
                            self.input_status.value)
                result.lost.append(document.id)
        return result

    async def run_forever(self, closed: asyncio.Event) -> None:
        """Tick every ``interval`` seconds until ``closed`` is set.

        A tick that is running when ``closed`` is set finishes first.
        """
        logger.info("Stage %s started, interval %.1fs", self.name, self.interval)
        await self.agent.initialize()
        try:
            while not closed.is_set():
                try:
                    await asyncio.wait_for(closed.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    await self.run_tick()
        finally:
            await self.agent.cleanup()
            logger.info("Stage %s stopped", self.name)
