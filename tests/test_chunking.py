"""Tests for the sliding-window chunker."""

import math

import pytest

from knowledge_pipeline.ingestion.infrastructure.chunking import TextChunker


def plain_words(count: int) -> str:
    return " ".join(f"word{i}" for i in range(count))


class TestTextChunker:

    def test_long_plain_text_windows_and_overlap(self):
        text = plain_words(3000)
        windows = TextChunker(chunk_size=2000, chunk_overlap=200).split(text)

        assert abs(len(windows) - math.ceil(len(text) / 1800)) <= 1
        assert all(len(w.text) <= 2000 for w in windows)
        for current, following in zip(windows, windows[1:]):
            assert current.text[-200:] == following.text[:200]
            assert following.start == current.start + len(current.text) - 200
        assert text.endswith(windows[-1].text)

    def test_window_ends_at_paragraph_break_in_second_half(self):
        text = "a" * 1500 + "\n\n" + "b" * 1500
        windows = TextChunker(chunk_size=2000, chunk_overlap=200).split(text)

        assert windows[0].text == "a" * 1500 + "\n\n"
        assert windows[1].start == 1502 - 200

    def test_sentence_end_used_when_no_line_breaks(self):
        sentence = "Plant access is logged by the control room. "
        text = sentence * 60
        windows = TextChunker(chunk_size=2000, chunk_overlap=200).split(text)

        assert windows[0].text.endswith(". ")

    def test_short_document_keeps_its_only_window(self):
        windows = TextChunker().split("Seal register.", min_chunk_chars=100)

        assert len(windows) == 1
        assert windows[0].text == "Seal register."

    def test_blank_text_yields_nothing(self):
        assert TextChunker().split("   \n  ") == []

    def test_overlap_must_be_below_half_the_window(self):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=400, chunk_overlap=200)
