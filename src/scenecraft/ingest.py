from pathlib import Path
from typing import Optional, Union
import logging

from .config import SplitOptions
from .database.models import Document
from .database.store import DocumentStore
from .errors import DocumentExistsError, SegmentationError
from .utils.generation_client import GenerationClient
from .utils.text_segmenter import TextSegmenter, heading_of

logger = logging.getLogger(__name__)


async def ingest_document(store: DocumentStore, client: GenerationClient,
                          path: Union[str, Path], name: Optional[str] = None,
                          options: Optional[SplitOptions] = None) -> Document:
    """Segment a local novel, upload it and create its document in ``chapterReady``."""
    path = Path(path)
    name = name or path.stem
    if await store.get_document_by_name(name) is not None:
        raise DocumentExistsError(f"document already exists: {name}")

    chapters = TextSegmenter(options).split_file(path)
    if not chapters:
        raise SegmentationError(f"no chapters found in {path.name}")
    logger.info("Split %s into %d chapters", path.name, len(chapters))

    file_id = await client.upload_source(path)
    titles = [heading_of(chapter) for chapter in chapters]
    return await store.create_document(name, file_id, chapters, titles=titles)
