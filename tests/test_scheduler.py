import asyncio
from itertools import cycle

import pytest

from scenecraft.agents.base import Agent
from scenecraft.config import RetryConfig, SchedulerConfig
from scenecraft.database.models import DocumentStatus
from scenecraft.scheduler.pipeline import PipelineScheduler
from scenecraft.scheduler.retry import ExponentialBackoff, RetryForever, policy_from_config
from scenecraft.scheduler.runner import StageRunner


class FailingAgent(Agent):
    name = "failing"
    input_status = DocumentStatus.CHAPTER_READY
    output_status = DocumentStatus.ROLE_READY

    def __init__(self, store, client):
        super().__init__(store, client)
        self.seen = []

    async def process(self, document, context):
        self.seen.append(document.id)
        raise RuntimeError("backend down")


class RacingAgent(Agent):
    """Moves the document itself, as a second scheduler would."""

    name = "racing"
    input_status = DocumentStatus.CHAPTER_READY
    output_status = DocumentStatus.ROLE_READY

    async def process(self, document, context):
        await self.store.update_status(document.id, DocumentStatus.ROLE_READY,
                                       expected=DocumentStatus.CHAPTER_READY)


@pytest.mark.asyncio
async def test_end_to_end_two_chapters(store, fake_client, make_document):
    doc = await make_document()
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig())

    results = await scheduler.run_once()

    assert [r.stage for r in results] == ["roles", "scenes", "images"]
    assert all(r.advanced == [doc.id] for r in results)
    saved = await store.get_document(doc.id)
    assert saved.status is DocumentStatus.IMG_READY
    assert saved.summary and saved.summary_image_url
    assert len(await store.list_roles_by_document(doc.id)) == 2

    scenes = await store.list_scenes_by_document(doc.id)
    assert [s.index for s in scenes] == [0, 1, 2, 3]
    assert all(s.image_url and s.voice_url for s in scenes)
    for chapter in await store.list_chapters(doc.id):
        assert len(chapter.scene_ids) == 2

    # Terminal documents are never picked up again.
    again = await scheduler.run_once()
    assert all(r.processed == 0 for r in again)


@pytest.mark.asyncio
async def test_failure_leaves_status_unchanged(store, fake_client, make_document):
    fake_client.fail_plans["extract_summary"] = cycle([True])
    doc = await make_document()
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig())

    for _ in range(3):
        results = await scheduler.run_once()
        assert results[0].failed == [doc.id]

    assert (await store.get_document(doc.id)).status is DocumentStatus.CHAPTER_READY
    assert fake_client.calls["extract_summary"] == 3


@pytest.mark.asyncio
async def test_flaky_images_converge(store, fake_client, make_document):
    fake_client.fail_plans["generate_image"] = cycle([False, True])
    doc = await make_document()
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig())

    for _ in range(10):
        await scheduler.run_once()
        if (await store.get_document(doc.id)).status is DocumentStatus.IMG_READY:
            break

    assert (await store.get_document(doc.id)).status is DocumentStatus.IMG_READY
    scenes = await store.list_scenes_by_document(doc.id)
    assert all(s.image_url and s.voice_url for s in scenes)


@pytest.mark.asyncio
async def test_one_failing_document_does_not_block_others(store, fake_client, make_document):
    def scenes_for(text):
        if "broken" in text:
            raise ValueError("model returned garbage")
        return ["a scene"]

    fake_client.scenes = scenes_for
    broken = await make_document("broken", ["第一章 broken", "第二章 broken"])
    good = await make_document("good", ["第一章 fine", "第二章 fine"])
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig())

    results = await scheduler.run_once()

    assert results[1].failed == [broken.id]
    assert results[1].advanced == [good.id]
    assert (await store.get_document(broken.id)).status is DocumentStatus.ROLE_READY
    assert (await store.get_document(good.id)).status is DocumentStatus.IMG_READY


@pytest.mark.asyncio
async def test_lost_race_is_not_an_error(store, fake_client, make_document):
    doc = await make_document()
    runner = StageRunner(RacingAgent(store, fake_client), store, interval=1)

    result = await runner.run_tick()

    assert result.lost == [doc.id]
    assert result.advanced == []
    assert (await store.get_document(doc.id)).status is DocumentStatus.ROLE_READY


@pytest.mark.asyncio
async def test_status_only_moves_forward(store, fake_client, make_document):
    doc = await make_document()
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig())
    order = [DocumentStatus.CHAPTER_READY, DocumentStatus.ROLE_READY,
             DocumentStatus.SCENE_READY, DocumentStatus.IMG_READY]

    seen = [(await store.get_document(doc.id)).status]
    for runner in scheduler.runners:
        await runner.run_tick()
        seen.append((await store.get_document(doc.id)).status)

    assert seen == order


def test_exponential_backoff_delays():
    policy = ExponentialBackoff(base_seconds=10, max_seconds=25)
    assert policy.should_attempt("doc", now=0)

    policy.record_failure("doc", now=0)
    assert not policy.should_attempt("doc", now=5)
    assert policy.should_attempt("doc", now=10)

    policy.record_failure("doc", now=10)
    assert policy.failures("doc") == 2
    assert not policy.should_attempt("doc", now=29)
    assert policy.should_attempt("doc", now=30)

    policy.record_failure("doc", now=30)
    assert policy.delay_for(3) == 25
    assert policy.should_attempt("doc", now=55)

    policy.record_success("doc")
    assert policy.failures("doc") == 0
    assert policy.should_attempt("doc", now=0)


def test_policy_from_config():
    assert isinstance(policy_from_config(RetryConfig()), RetryForever)
    backoff = policy_from_config(RetryConfig(strategy="backoff", base_seconds=1, max_seconds=2))
    assert isinstance(backoff, ExponentialBackoff)
    assert backoff.max_seconds == 2


@pytest.mark.asyncio
async def test_runner_skips_documents_in_backoff(store, fake_client, make_document):
    doc = await make_document()
    agent = FailingAgent(store, fake_client)
    runner = StageRunner(agent, store, interval=1, retry_policy=ExponentialBackoff(base_seconds=3600))

    first = await runner.run_tick()
    second = await runner.run_tick()

    assert first.failed == [doc.id]
    assert second.skipped == [doc.id]
    assert agent.seen == [doc.id]


@pytest.mark.asyncio
async def test_retry_forever_retries_every_tick(store, fake_client, make_document):
    await make_document()
    agent = FailingAgent(store, fake_client)
    runner = StageRunner(agent, store, interval=1)

    for _ in range(3):
        await runner.run_tick()

    assert len(agent.seen) == 3


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_background_loops_reach_terminal_state(store, fake_client, make_document):
    doc = await make_document()
    config = SchedulerConfig(role_interval_secs=0.05, scene_interval_secs=0.05, image_interval_secs=0.05)

    async with PipelineScheduler(store, fake_client, config) as scheduler:
        assert scheduler.running
        while (await store.get_document(doc.id)).status is not DocumentStatus.IMG_READY:
            await asyncio.sleep(0.05)

    assert not scheduler.running
    assert all(not runner.agent.is_active for runner in scheduler.runners)


@pytest.mark.asyncio
async def test_disabled_scheduler_does_not_start(store, fake_client):
    scheduler = PipelineScheduler(store, fake_client, SchedulerConfig(enabled=False))
    scheduler.start()
    assert not scheduler.running
    await scheduler.stop()


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_stop_waits_for_running_tick(store, fake_client, make_document):
    await make_document()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_summary(file_id):
        started.set()
        await release.wait()
        return "slow summary"

    fake_client.extract_summary = slow_summary
    config = SchedulerConfig(role_interval_secs=0.01, scene_interval_secs=60, image_interval_secs=60)
    scheduler = PipelineScheduler(store, fake_client, config)
    scheduler.start()
    await started.wait()

    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0.05)
    assert not stopping.done()

    release.set()
    await stopping
    assert not scheduler.running
    docs = await store.list_by_status(DocumentStatus.ROLE_READY)
    assert len(docs) == 1
