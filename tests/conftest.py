import logging
from collections import Counter
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Union

import pytest

from scenecraft.database.store import DocumentStore
from scenecraft.errors import GenerationError
from scenecraft.scheduler.context import TickContext
from scenecraft.utils.generation_client import RoleInfo


class FakeGenerationClient:
    """Stands in for GenerationClient; ``fail_plans`` maps a method name to an
    iterator of booleans, True meaning that call raises GenerationError."""

    def __init__(self, summary: str = "A young swordsman leaves his village.",
                 roles: Optional[List[RoleInfo]] = None,
                 scenes: Union[Sequence[str], Callable[[str], List[str]], None] = None):
        self.summary = summary
        self.roles = roles if roles is not None else [
            RoleInfo(name="Li Mu", gender="male", character="stubborn", appearance="tall, black robe"),
            RoleInfo(name="Su Yan", gender="female", character="clever", appearance="red ribbon"),
        ]
        self.scenes = scenes if scenes is not None else ["the duel at dawn", "the long road south"]
        self.fail_plans: Dict[str, Iterator[bool]] = {}
        self.calls: Counter = Counter()

    def _call(self, name: str) -> int:
        self.calls[name] += 1
        plan = self.fail_plans.get(name)
        if plan is not None and next(plan, False):
            raise GenerationError(f"{name} failed", status=500, body="boom")
        return self.calls[name]

    async def upload_source(self, path) -> str:
        return f"file-{self._call('upload_source')}"

    async def extract_summary(self, file_id: str) -> str:
        self._call("extract_summary")
        return self.summary

    async def extract_roles(self, file_id: str, summary: str = "") -> List[RoleInfo]:
        self._call("extract_roles")
        return list(self.roles)

    async def generate_scenes(self, chapter_text: str) -> List[str]:
        self._call("generate_scenes")
        if callable(self.scenes):
            return self.scenes(chapter_text)
        return list(self.scenes)

    async def generate_image(self, scene_text: str, summary: str = "", roles=()) -> str:
        return f"https://img.example/{self._call('generate_image')}.png"

    async def generate_cover_image(self, summary: str) -> str:
        return f"https://img.example/cover-{self._call('generate_cover_image')}.png"

    async def generate_speech(self, text: str) -> str:
        return f"https://audio.example/{self._call('generate_speech')}.wav"

    async def cleanup(self) -> None:
        pass


@pytest.fixture
async def store():
    store = DocumentStore("sqlite+aiosqlite:///:memory:")
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest.fixture
def context():
    return TickContext.new("test", logging.getLogger("scenecraft.tests"))


@pytest.fixture
def make_document(store):
    async def _make(name: str = "novel", chapters: Sequence[str] = ("第一章 出发,他离开了村子", "第二章 相遇,她在桥上等他")):
        return await store.create_document(name, f"file-{name}", list(chapters))
    return _make
