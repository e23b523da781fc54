from datetime import datetime, timezone
from typing import Dict, Optional
import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Enum, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def make_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(enum.Enum):
    CHAPTER_READY = "chapterReady"
    ROLE_READY = "roleReady"
    SCENE_READY = "sceneReady"
    IMG_READY = "imgReady"


# The only legal forward moves. IMG_READY is terminal.
STATUS_TRANSITIONS: Dict[DocumentStatus, DocumentStatus] = {
    DocumentStatus.CHAPTER_READY: DocumentStatus.ROLE_READY,
    DocumentStatus.ROLE_READY: DocumentStatus.SCENE_READY,
    DocumentStatus.SCENE_READY: DocumentStatus.IMG_READY,
}


def next_status(status: DocumentStatus) -> Optional[DocumentStatus]:
    return STATUS_TRANSITIONS.get(status)


def is_valid_transition(current: DocumentStatus, new: DocumentStatus) -> bool:
    return STATUS_TRANSITIONS.get(current) is new


class Document(Base):
    __tablename__ = 'documents'

    id = Column(String(32), primary_key=True, default=make_id)
    name = Column(String(128), nullable=False, unique=True)
    file_id = Column(String(255), nullable=False, default="")
    summary = Column(Text, nullable=False, default="")
    summary_image_url = Column(String(500), nullable=False, default="")
    status = Column(
        Enum(DocumentStatus, name="document_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DocumentStatus.CHAPTER_READY,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    chapters = relationship("Chapter", back_populates="document", order_by="Chapter.index")

    def __repr__(self) -> str:
        return f"<Document id={self.id} name={self.name!r} status={self.status.value if self.status else None}>"


class Chapter(Base):
    __tablename__ = 'chapters'
    __table_args__ = (UniqueConstraint('document_id', 'index', name='uk_chapter_document_index'),)

    id = Column(String(32), primary_key=True, default=make_id)
    document_id = Column(String(32), ForeignKey('documents.id'), nullable=False, index=True)
    index = Column(Integer, nullable=False)
    title = Column(String(100), nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    scene_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    document = relationship("Document", back_populates="chapters")


class Role(Base):
    __tablename__ = 'roles'

    id = Column(String(32), primary_key=True, default=make_id)
    document_id = Column(String(32), ForeignKey('documents.id'), nullable=False, index=True)
    name = Column(String(50), nullable=False, default="")
    gender = Column(String(10), nullable=False, default="")
    character = Column(String(500), nullable=False, default="")
    appearance = Column(String(500), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Scene(Base):
    __tablename__ = 'scenes'
    __table_args__ = (UniqueConstraint('document_id', 'index', name='uk_scene_document_index'),)

    id = Column(String(32), primary_key=True, default=make_id)
    chapter_id = Column(String(32), ForeignKey('chapters.id'), nullable=False, index=True)
    document_id = Column(String(32), ForeignKey('documents.id'), nullable=False, index=True)
    index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False, default="")
    image_url = Column(String(500), nullable=False, default="")
    voice_url = Column(String(500), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
