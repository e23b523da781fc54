"""Async persistence for documents, chapters, roles and scenes.

Every public method runs in its own transaction. Returned ORM objects are
detached (``expire_on_commit=False``) and safe to read after the call.
"""
from typing import List, Optional, Sequence
import logging

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.pool import StaticPool

from .models import Base, Chapter, Document, DocumentStatus, Role, Scene, is_valid_transition, utcnow
from ..errors import (
    ChapterNotFoundError,
    DocumentExistsError,
    DocumentNotFoundError,
    InvalidTransitionError,
    SceneNotFoundError,
)

logger = logging.getLogger(__name__)


def create_engine_for_url(db_url: str, echo: bool = False) -> AsyncEngine:
    if db_url.startswith("sqlite") and ":memory:" in db_url:
        # In-memory sqlite lives inside one connection; share it.
        return create_async_engine(
            db_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(db_url, echo=echo)


class DocumentStore:
    def __init__(self, db_url: str = "sqlite+aiosqlite:///:memory:",
                 engine: Optional[AsyncEngine] = None, echo: bool = False):
        self.engine = engine or create_engine_for_url(db_url, echo=echo)
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # ===== Document =====

    async def create_document(self, name: str, file_id: str, chapters: Sequence[str],
                              titles: Optional[Sequence[str]] = None) -> Document:
        """Create a document in ``chapterReady`` with its chapters in segment order."""
        if titles is not None and len(titles) != len(chapters):
            raise ValueError("titles must match chapters one to one")

        async with self.async_session() as session, session.begin():
            existing = await session.execute(select(Document.id).where(Document.name == name))
            if existing.scalar_one_or_none() is not None:
                raise DocumentExistsError(f"document already exists: {name}")

            now = utcnow()
            doc = Document(
                name=name,
                file_id=file_id,
                status=DocumentStatus.CHAPTER_READY,
                created_at=now,
                updated_at=now,
            )
            session.add(doc)
            await session.flush()

            session.add_all([
                Chapter(
                    document_id=doc.id,
                    index=i,
                    title=titles[i] if titles is not None else "",
                    content=text,
                    scene_ids=[],
                    created_at=now,
                    updated_at=now,
                )
                for i, text in enumerate(chapters)
            ])
        logger.info("Created document %s (%s) with %d chapters", doc.id, name, len(chapters))
        return doc

    async def get_document(self, document_id: str) -> Document:
        async with self.async_session() as session:
            result = await session.execute(select(Document).where(Document.id == document_id))
            doc = result.scalar_one_or_none()
        if doc is None:
            raise DocumentNotFoundError(f"no such document: {document_id}")
        return doc

    async def get_document_by_name(self, name: str) -> Optional[Document]:
        async with self.async_session() as session:
            result = await session.execute(select(Document).where(Document.name == name))
            return result.scalar_one_or_none()

    async def list_documents(self) -> List[Document]:
        async with self.async_session() as session:
            result = await session.execute(select(Document).order_by(Document.updated_at.desc()))
            return list(result.scalars().all())

    async def list_by_status(self, status: DocumentStatus) -> List[Document]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Document)
                .where(Document.status == status)
                .order_by(Document.created_at.asc(), Document.name.asc())
            )
            return list(result.scalars().all())

    async def update_status(self, document_id: str, new_status: DocumentStatus,
                            expected: Optional[DocumentStatus] = None) -> bool:
        """Move a document to ``new_status``.

        With ``expected`` set this is a compare-and-swap: the transition must
        be the table's successor of ``expected`` and the row is only changed
        if it still holds ``expected``. Returns False when it did not.
        Without ``expected`` the write is unconditional (manual repair).
        """
        if expected is not None and not is_valid_transition(expected, new_status):
            raise InvalidTransitionError(f"illegal transition {expected.value} -> {new_status.value}")

        stmt = update(Document).where(Document.id == document_id)
        if expected is not None:
            stmt = stmt.where(Document.status == expected)
        stmt = stmt.values(status=new_status, updated_at=utcnow())

        async with self.async_session() as session, session.begin():
            result = await session.execute(stmt)
            if result.rowcount:
                return True
            found = await session.execute(select(Document.id).where(Document.id == document_id))
            if found.scalar_one_or_none() is None:
                raise DocumentNotFoundError(f"no such document: {document_id}")
        return False

    async def update_summary(self, document_id: str, summary: str) -> None:
        await self._update_document(document_id, summary=summary)

    async def update_summary_image(self, document_id: str, image_url: str) -> None:
        await self._update_document(document_id, summary_image_url=image_url)

    async def _update_document(self, document_id: str, **values) -> None:
        async with self.async_session() as session, session.begin():
            result = await session.execute(
                update(Document).where(Document.id == document_id).values(updated_at=utcnow(), **values)
            )
            if not result.rowcount:
                raise DocumentNotFoundError(f"no such document: {document_id}")

    # ===== Chapter =====

    async def list_chapters(self, document_id: str) -> List[Chapter]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Chapter).where(Chapter.document_id == document_id).order_by(Chapter.index.asc())
            )
            return list(result.scalars().all())

    async def update_chapter_scene_ids(self, chapter_id: str, scene_ids: Sequence[str]) -> None:
        async with self.async_session() as session, session.begin():
            await self._set_chapter_scene_ids(session, chapter_id, scene_ids)

    async def _set_chapter_scene_ids(self, session: AsyncSession, chapter_id: str,
                                     scene_ids: Sequence[str]) -> None:
        result = await session.execute(
            update(Chapter)
            .where(Chapter.id == chapter_id)
            .values(scene_ids=list(scene_ids), updated_at=utcnow())
        )
        if not result.rowcount:
            raise ChapterNotFoundError(f"no such chapter: {chapter_id}")

    # ===== Role =====

    async def list_roles_by_document(self, document_id: str) -> List[Role]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Role).where(Role.document_id == document_id).order_by(Role.created_at.asc())
            )
            return list(result.scalars().all())

    async def create_roles(self, roles: Sequence[Role]) -> None:
        if not roles:
            return
        async with self.async_session() as session, session.begin():
            session.add_all(roles)

    # ===== Scene =====

    async def create_scenes(self, scenes: Sequence[Scene]) -> None:
        if not scenes:
            return
        async with self.async_session() as session, session.begin():
            session.add_all(scenes)

    async def create_chapter_scenes(self, chapter_id: str, scenes: Sequence[Scene]) -> List[str]:
        """Insert a chapter's scenes and record their ids on the chapter atomically."""
        if not scenes:
            return []
        async with self.async_session() as session, session.begin():
            session.add_all(scenes)
            await session.flush()
            scene_ids = [scene.id for scene in scenes]
            await self._set_chapter_scene_ids(session, chapter_id, scene_ids)
        return scene_ids

    async def list_scenes_by_chapter(self, chapter_id: str) -> List[Scene]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Scene).where(Scene.chapter_id == chapter_id).order_by(Scene.index.asc())
            )
            return list(result.scalars().all())

    async def list_scenes_by_document(self, document_id: str) -> List[Scene]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Scene).where(Scene.document_id == document_id).order_by(Scene.index.asc())
            )
            return list(result.scalars().all())

    async def list_pending_image_scenes(self, document_id: str) -> List[Scene]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Scene)
                .where(Scene.document_id == document_id)
                .where(or_(Scene.image_url == "", Scene.image_url.is_(None)))
                .order_by(Scene.index.asc())
            )
            return list(result.scalars().all())

    async def list_pending_voice_scenes(self, document_id: str) -> List[Scene]:
        """Scenes that already have an image but are still missing speech."""
        async with self.async_session() as session:
            result = await session.execute(
                select(Scene)
                .where(Scene.document_id == document_id)
                .where(Scene.image_url != "")
                .where(or_(Scene.voice_url == "", Scene.voice_url.is_(None)))
                .order_by(Scene.index.asc())
            )
            return list(result.scalars().all())

    async def max_scene_index(self, document_id: str) -> int:
        async with self.async_session() as session:
            result = await session.execute(
                select(func.max(Scene.index)).where(Scene.document_id == document_id)
            )
            value = result.scalar_one_or_none()
        return -1 if value is None else value

    async def update_scene_image(self, scene_id: str, image_url: str) -> None:
        await self._update_scene(scene_id, image_url=image_url)

    async def update_scene_voice(self, scene_id: str, voice_url: str) -> None:
        await self._update_scene(scene_id, voice_url=voice_url)

    async def _update_scene(self, scene_id: str, **values) -> None:
        async with self.async_session() as session, session.begin():
            result = await session.execute(
                update(Scene).where(Scene.id == scene_id).values(updated_at=utcnow(), **values)
            )
            if not result.rowcount:
                raise SceneNotFoundError(f"no such scene: {scene_id}")
