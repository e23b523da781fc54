import pytest

from scenecraft.agents.images.agent import ImageAgent
from scenecraft.agents.roles.agent import RoleAgent
from scenecraft.agents.scenes.agent import SceneAgent
from scenecraft.errors import GenerationError


@pytest.fixture
async def scened_document(store, fake_client, context, make_document):
    doc = await make_document()
    await RoleAgent(store, fake_client).process(doc, context)
    await SceneAgent(store, fake_client).process(doc, context)
    return await store.get_document(doc.id)


@pytest.mark.asyncio
async def test_image_agent_fills_every_scene(store, fake_client, context, scened_document):
    await ImageAgent(store, fake_client).process(scened_document, context)

    scenes = await store.list_scenes_by_document(scened_document.id)
    assert len(scenes) == 4
    assert all(s.image_url and s.voice_url for s in scenes)
    assert await store.list_pending_image_scenes(scened_document.id) == []
    assert await store.list_pending_voice_scenes(scened_document.id) == []


@pytest.mark.asyncio
async def test_image_agent_converges_with_flaky_images(store, fake_client, context, scened_document):
    fake_client.fail_plans["generate_image"] = iter([False, True, False, True])
    agent = ImageAgent(store, fake_client)

    attempts = 0
    while await store.list_pending_image_scenes(scened_document.id):
        attempts += 1
        assert attempts <= 5
        try:
            await agent.process(scened_document, context)
        except GenerationError:
            pass

    scenes = await store.list_scenes_by_document(scened_document.id)
    assert all(s.image_url and s.voice_url for s in scenes)
    # Scenes that already had an image were never redrawn.
    assert fake_client.calls["generate_image"] == len(scenes) + 2


@pytest.mark.asyncio
async def test_image_agent_recovers_missing_voice(store, fake_client, context, scened_document):
    fake_client.fail_plans["generate_speech"] = iter([True])
    agent = ImageAgent(store, fake_client)

    with pytest.raises(GenerationError):
        await agent.process(scened_document, context)
    pending_voice = await store.list_pending_voice_scenes(scened_document.id)
    assert [s.index for s in pending_voice] == [0]

    await agent.process(scened_document, context)

    scenes = await store.list_scenes_by_document(scened_document.id)
    assert all(s.image_url and s.voice_url for s in scenes)
    assert fake_client.calls["generate_image"] == len(scenes)


@pytest.mark.asyncio
async def test_image_agent_without_scenes(store, fake_client, context, make_document):
    doc = await make_document()
    await ImageAgent(store, fake_client).process(doc, context)
    assert fake_client.calls["generate_image"] == 0
