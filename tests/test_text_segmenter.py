import pytest

from scenecraft.config import SplitOptions
from scenecraft.errors import SegmentationError, UnsupportedFormatError
from scenecraft.utils.text_segmenter import (
    TextSegmenter,
    best_chapter_pattern,
    heading_of,
    segment,
    split_by_chapters,
)

CHINESE_NOVEL = (
    "序言：这是一个故事。\n"
    "第一章 出发\n少年离开了村子。\n\n"
    "第二章 相遇\n他在桥上遇见了她。\n"
    "第三章 结局\n两人一同南下。\n"
)


def _squash(text: str) -> str:
    return "".join(text.split())


def test_detects_chinese_chapter_headings():
    chunks = segment(CHINESE_NOVEL)
    assert chunks == [
        "第一章 出发,少年离开了村子。",
        "第二章 相遇,他在桥上遇见了她。",
        "第三章 结局,两人一同南下。",
    ]


def test_text_before_first_heading_is_dropped():
    chapters = split_by_chapters(CHINESE_NOVEL)
    assert len(chapters) == 3
    assert all("序言" not in chapter for chapter in chapters)


def test_single_heading_is_not_a_chapter_split():
    assert split_by_chapters("第一章 唯一的一章\n内容") == []


def test_english_chapter_headings():
    text = "Chapter 1\nThe road.\nChapter 2\nThe river.\nChapter 3\nThe sea."
    pattern, count = best_chapter_pattern(text)
    assert count == 3
    assert segment(text) == ["Chapter 1,The road.", "Chapter 2,The river.", "Chapter 3,The sea."]


def test_tie_goes_to_first_listed_pattern():
    pattern, count = best_chapter_pattern("第一章 a\n第二章 b")
    assert count == 2
    assert pattern.pattern.startswith("(第[")
    assert "章节回])" in pattern.pattern


def test_fallback_on_paragraphs_is_lossless():
    text = "Alpha line one.\nline two.\n\nBeta paragraph.\n\n\n\nGamma."
    chunks = segment(text)
    assert chunks == ["Alpha line one.,line two.", "Beta paragraph.", "Gamma."]
    assert _squash("".join(c.replace(",", "") for c in chunks)) == _squash(text)


def test_fallback_handles_crlf_paragraphs():
    assert segment("one\r\ntwo\r\n\r\nthree") == ["one,two", "three"]


def test_single_newline_separator():
    assert segment("first\nsecond\n\nthird", separator="\n") == ["first", "second", "third"]


def test_oversized_paragraph_respects_chunk_size():
    text = "word " * 500
    chunks = segment(text, chunk_size=100, chunk_overlap=10)
    assert len(chunks) > 1
    assert all(0 < len(chunk) <= 100 for chunk in chunks)


def test_chunks_are_trimmed_single_line_and_non_empty():
    text = "  first para  \n\n\n \n second\r\npara \n\n" + ("x" * 30 + "\n") * 10
    chunks = TextSegmenter(SplitOptions(chunk_size=120, chunk_overlap=0)).segment(text)
    assert chunks
    for chunk in chunks:
        assert chunk == chunk.strip()
        assert chunk
        assert "\n" not in chunk and "\r" not in chunk


def test_empty_text_gives_no_chunks():
    assert segment("") == []
    assert segment(" \n\n \n") == []


def test_heading_of_returns_longest_heading():
    assert heading_of("第一章 出发,少年离开了村子") == "第一章 出发"
    assert heading_of("Chapter 12,It was night") == "Chapter 12"
    assert heading_of("no heading here") == ""


def test_split_file_reads_txt_with_bom(tmp_path):
    path = tmp_path / "novel.txt"
    path.write_text("\ufeff" + CHINESE_NOVEL, encoding="utf-8")
    chunks = TextSegmenter().split_file(path)
    assert len(chunks) == 3
    assert chunks[0].startswith("第一章")


def test_split_file_markdown(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Title\n\nPara one.\n\n## Part two\n\nPara two.\n", encoding="utf-8")
    chunks = TextSegmenter().split_file(path)
    assert chunks
    assert all("\n" not in chunk for chunk in chunks)
    assert "Para two." in ",".join(chunks)


def test_split_file_rejects_unsupported_extension(tmp_path):
    path = tmp_path / "novel.pdf"
    path.write_bytes(b"%PDF-1.4")
    with pytest.raises(UnsupportedFormatError):
        TextSegmenter().split_file(path)


def test_split_file_rejects_empty_and_binary(tmp_path):
    empty = tmp_path / "empty.txt"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(SegmentationError):
        TextSegmenter().split_file(empty)

    binary = tmp_path / "binary.txt"
    binary.write_bytes(b"\xff\xfe\x00\xd8garbage")
    with pytest.raises(SegmentationError):
        TextSegmenter().split_file(binary)


def test_roman_chapter_headings_are_case_sensitive():
    prose = "Chapter Civil war broke out.\nThe town burned.\n\nChapter Civil unrest grew.\nNobody slept."
    assert split_by_chapters(prose) == []

    text = "Chapter IV\nThe road.\nChapter V\nThe river."
    pattern, count = best_chapter_pattern(text)
    assert count == 2
    assert segment(text) == ["Chapter IV,The road.", "Chapter V,The river."]


def test_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(ValueError):
        SplitOptions(chunk_size=10, chunk_overlap=20)
    with pytest.raises(ValueError):
        SplitOptions(chunk_size=10, chunk_overlap=10)
