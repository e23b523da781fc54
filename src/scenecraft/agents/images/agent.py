from ..base import Agent
from ...database.models import Document, DocumentStatus
from ...scheduler.context import TickContext
from ...utils.generation_client import RoleInfo


class ImageAgent(Agent):
    """Draw an image and synthesise narration for every scene still missing them."""

    name = "images"
    input_status = DocumentStatus.SCENE_READY
    output_status = DocumentStatus.IMG_READY

    async def process(self, document: Document, context: TickContext) -> None:
        log = context.log
        roles = [
            RoleInfo(name=r.name, gender=r.gender, character=r.character, appearance=r.appearance)
            for r in await self.store.list_roles_by_document(document.id)
        ]

        pending = await self.store.list_pending_image_scenes(document.id)
        pending += await self.store.list_pending_voice_scenes(document.id)
        if not pending:
            log.info("No pending scenes for doc: %s", document.id)
            return
        pending.sort(key=lambda scene: scene.index)
        log.info("Found %d pending scenes for doc: %s", len(pending), document.id)

        for scene in pending:
            if not scene.image_url:
                image_url = await self.client.generate_image(scene.content, document.summary or "", roles)
                await self.store.update_scene_image(scene.id, image_url)
                scene.image_url = image_url
            if not scene.voice_url:
                voice_url = await self.client.generate_speech(scene.content)
                await self.store.update_scene_voice(scene.id, voice_url)
                scene.voice_url = voice_url
            log.info("Scene %s done (index %d)", scene.id, scene.index)
