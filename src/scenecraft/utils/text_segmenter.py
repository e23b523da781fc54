"""Turn an uploaded novel into ordered chapter-sized chunks.

Chapter headings win when the text has them; otherwise paragraphs are
packed and oversized paragraphs go through LangChain's recursive splitter.
Every chunk comes back trimmed and on a single line.
"""
from pathlib import Path
from time import perf_counter
from typing import List, Optional, Sequence, Tuple, Union
import logging
import re

from langchain_text_splitters import MarkdownTextSplitter, RecursiveCharacterTextSplitter

from ..config import SplitOptions
from ..errors import SegmentationError, UnsupportedFormatError

logger = logging.getLogger(__name__)

_CN_NUM = "一二三四五六七八九十百千万零〇两0-9"

# Order matters: on equal match counts the earlier pattern is used.
CHAPTER_PATTERNS: Tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    rf"(第[{_CN_NUM}]+[章节回])",
    rf"(第[{_CN_NUM}]+章\s*[^\n]*)",
    rf"(第[{_CN_NUM}]+回\s*[^\n]*)",
    rf"(第[{_CN_NUM}]+节\s*[^\n]*)",
    r"(第[0-9]+[章节回])",
    r"(第[0-9]+章\s*[^\n]*)",
    r"(Chapter\s+[0-9]+)",
    r"(第[IVX]+[章节回])",
    rf"(第[{_CN_NUM}]+卷\s*[^\n]*)",
    r"(?m)(^[ \t]*Chapter\s+(?-i:[IVXLC]+)\b[^\n]*)",
    r"(?m)(^[ \t]*Section\s+[0-9]+\b[^\n]*)",
    r"(?m)(^[ \t]*Volume\s+[0-9]+\b[^\n]*)",
))

_LINE_BREAKS = re.compile(r"[\r\n]+")
CHUNK_JOINER = ","

SUPPORTED_EXTENSIONS = (".txt", ".md")


def _separators_for(separator: Optional[str]) -> List[str]:
    if separator == "\n":
        return ["\n", " ", ""]
    return ["\n\n", "\n", " ", ""]


def _clean(chunks: Sequence[str]) -> List[str]:
    cleaned = []
    for chunk in chunks:
        chunk = _LINE_BREAKS.sub(CHUNK_JOINER, chunk.strip())
        if chunk:
            cleaned.append(chunk)
    return cleaned


def best_chapter_pattern(text: str) -> Tuple[Optional[re.Pattern], int]:
    best, best_count = None, 0
    for pattern in CHAPTER_PATTERNS:
        count = sum(1 for _ in pattern.finditer(text))
        if count > best_count:
            best, best_count = pattern, count
    return best, best_count


def split_by_chapters(text: str) -> List[str]:
    """Cut ``text`` at each heading of its most frequent chapter pattern.

    Returns ``[]`` unless some pattern matches more than once. Text before
    the first heading is dropped. Chunks are never merged or size-limited.
    """
    pattern, count = best_chapter_pattern(text)
    if pattern is None or count <= 1:
        logger.info("No chapter pattern found, best match count: %d", count)
        return []

    starts = [m.start() for m in pattern.finditer(text)]
    logger.info("Chapter pattern %s matched %d headings", pattern.pattern, len(starts))
    chapters = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(text)
        chapter = text[start:end].strip()
        if chapter:
            chapters.append(chapter)
    return chapters


def heading_of(chunk: str) -> str:
    """The longest chapter heading line a chunk starts with, or ``""``."""
    heading = ""
    for pattern in CHAPTER_PATTERNS:
        match = pattern.match(chunk)
        if match:
            candidate = match.group(0).split(CHUNK_JOINER, 1)[0].strip()[:100]
            if len(candidate) > len(heading):
                heading = candidate
    return heading


class TextSegmenter:
    def __init__(self, options: Optional[SplitOptions] = None):
        self.options = options or SplitOptions()

    def _recursive_splitter(self) -> RecursiveCharacterTextSplitter:
        return RecursiveCharacterTextSplitter(
            chunk_size=self.options.chunk_size,
            chunk_overlap=self.options.chunk_overlap,
            separators=_separators_for(self.options.separator),
            length_function=len,
        )

    def split_by_separator(self, text: str) -> List[str]:
        sep = self.options.separator or "\n\n"
        pieces = text.split(sep)
        if sep == "\n\n" and len(pieces) == 1:
            pieces = text.split("\r\n\r\n")

        splitter = None
        chunks: List[str] = []
        for piece in pieces:
            piece = piece.strip()
            if not piece:
                continue
            if len(piece) <= self.options.chunk_size:
                chunks.append(piece)
                continue
            try:
                if splitter is None:
                    splitter = self._recursive_splitter()
                chunks.extend(splitter.split_text(piece))
            except ValueError as e:
                logger.warning("Failed to split oversized piece (%d chars), keeping it whole: %s", len(piece), e)
                chunks.append(piece)
        return chunks

    def segment(self, text: str) -> List[str]:
        start = perf_counter()
        chunks = split_by_chapters(text)
        if not chunks:
            logger.info("Falling back to separator based splitting")
            chunks = self.split_by_separator(text)
        chunks = _clean(chunks)
        for i, chunk in enumerate(chunks):
            logger.debug("Chunk %d, len: %d, %s", i, len(chunk), chunk[:48])
        logger.info("Segmented %d chars into %d chunks in %.1fms",
                    len(text), len(chunks), (perf_counter() - start) * 1000)
        return chunks

    def segment_markdown(self, text: str) -> List[str]:
        try:
            splitter = MarkdownTextSplitter(
                chunk_size=self.options.chunk_size,
                chunk_overlap=self.options.chunk_overlap,
            )
            chunks = splitter.split_text(text)
        except ValueError as e:
            raise SegmentationError(f"markdown split failed: {e}") from e
        return _clean(chunks)

    def split_file(self, path: Union[str, Path]) -> List[str]:
        path = Path(path)
        ext = path.suffix.lower()
        if ext not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(f"unsupported file extension: {ext or '<none>'}")
        try:
            content = path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as e:
            raise SegmentationError(f"{path.name} is not valid UTF-8 text") from e
        if not content.strip():
            raise SegmentationError("empty content")

        if ext == ".md":
            return self.segment_markdown(content)
        return self.segment(content)


def segment(text: str, chunk_size: int = 5000, chunk_overlap: int = 100,
            separator: Optional[str] = None) -> List[str]:
    options = SplitOptions(chunk_size=chunk_size, chunk_overlap=chunk_overlap,
                           separator=separator or "\n\n")
    return TextSegmenter(options).segment(text)
