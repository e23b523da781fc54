from ..base import Agent
from ...database.models import Document, DocumentStatus, Role, make_id, utcnow
from ...errors import NoRolesExtractedError
from ...scheduler.context import TickContext


class RoleAgent(Agent):
    """Summarise the novel, draw its cover and extract the character list once."""

    name = "roles"
    input_status = DocumentStatus.CHAPTER_READY
    output_status = DocumentStatus.ROLE_READY

    async def process(self, document: Document, context: TickContext) -> None:
        log = context.log
        summary = document.summary or ""

        if not summary:
            log.info("Extracting summary, doc: %s", document.id)
            summary = await self.client.extract_summary(document.file_id)
            if not summary:
                log.warning("Empty summary extracted for doc: %s", document.id)
            await self.store.update_summary(document.id, summary)
            document.summary = summary
            if summary:
                await self._generate_cover(document, summary, context)

        existing = await self.store.list_roles_by_document(document.id)
        if existing:
            log.info("Roles already exist for doc: %s, count: %d", document.id, len(existing))
            return

        log.info("Extracting roles, doc: %s", document.id)
        extracted = await self.client.extract_roles(document.file_id, summary)
        if not extracted:
            raise NoRolesExtractedError(f"no roles extracted for document {document.id}")

        now = utcnow()
        roles = [
            Role(
                id=make_id(),
                document_id=document.id,
                name=info.name,
                gender=info.gender,
                character=info.character,
                appearance=info.appearance,
                created_at=now,
                updated_at=now,
            )
            for info in extracted
        ]
        await self.store.create_roles(roles)
        log.info("Created %d roles for doc: %s", len(roles), document.id)

    async def _generate_cover(self, document: Document, summary: str, context: TickContext) -> None:
        # Cover art is best effort and never fails the stage.
        try:
            cover_url = await self.client.generate_cover_image(summary)
            await self.store.update_summary_image(document.id, cover_url)
        except Exception:
            context.log.warning("Failed to generate cover image, doc: %s", document.id, exc_info=True)
            return
        document.summary_image_url = cover_url
        context.log.info("Cover image saved for doc: %s", document.id)
