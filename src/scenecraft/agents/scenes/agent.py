from typing import List

from ..base import Agent
from ...database.models import Chapter, Document, DocumentStatus, Scene, make_id, utcnow
from ...scheduler.context import TickContext

MAX_SCENES_PER_CHAPTER = 3


class SceneAgent(Agent):
    """Generate up to three scene descriptions for every chapter of a document."""

    name = "scenes"
    input_status = DocumentStatus.ROLE_READY
    output_status = DocumentStatus.SCENE_READY

    def __init__(self, *args, max_scenes_per_chapter: int = MAX_SCENES_PER_CHAPTER, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_scenes_per_chapter = max_scenes_per_chapter

    async def process(self, document: Document, context: TickContext) -> None:
        log = context.log
        chapters = await self.store.list_chapters(document.id)
        if not chapters:
            log.warning("No chapters found for doc: %s", document.id)
            return

        # Scenes left by an earlier failed attempt keep their indices.
        next_index = await self.store.max_scene_index(document.id) + 1
        created = 0
        for chapter in chapters:
            if await self._reuse_existing(chapter, context):
                continue

            log.info("Generating scenes for chapter %s (index %d)", chapter.id, chapter.index)
            descriptions = await self.client.generate_scenes(chapter.content)
            if len(descriptions) > self.max_scenes_per_chapter:
                log.warning("Got %d scenes for chapter %s, keeping %d",
                            len(descriptions), chapter.id, self.max_scenes_per_chapter)
            descriptions = self._clean(descriptions[:self.max_scenes_per_chapter])
            if not descriptions:
                log.info("No scenes for chapter %s", chapter.id)
                continue

            now = utcnow()
            scenes = []
            for text in descriptions:
                scenes.append(Scene(
                    id=make_id(),
                    chapter_id=chapter.id,
                    document_id=document.id,
                    index=next_index,
                    content=text,
                    created_at=now,
                    updated_at=now,
                ))
                next_index += 1
            await self.store.create_chapter_scenes(chapter.id, scenes)
            created += len(scenes)

        log.info("Scene generation finished for doc: %s, new scenes: %d", document.id, created)

    async def _reuse_existing(self, chapter: Chapter, context: TickContext) -> bool:
        existing = await self.store.list_scenes_by_chapter(chapter.id)
        if not existing:
            return False
        scene_ids = [scene.id for scene in existing]
        if list(chapter.scene_ids or []) != scene_ids:
            await self.store.update_chapter_scene_ids(chapter.id, scene_ids)
        context.log.info("Chapter %s already has %d scenes, skipping", chapter.id, len(existing))
        return True

    @staticmethod
    def _clean(descriptions: List[str]) -> List[str]:
        return [text.strip() for text in descriptions if text and text.strip()]
