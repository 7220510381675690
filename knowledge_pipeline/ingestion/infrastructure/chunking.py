"""
Text Chunking
=============

Splits extracted text into overlapping windows.

Windows are ``chunk_size`` characters at most. The end of a window moves back
to a paragraph break, line break or sentence end when one falls in its second
half, and the next window starts ``chunk_overlap`` characters before that end,
so consecutive chunks share exactly ``chunk_overlap`` characters.
"""

from dataclasses import dataclass
from typing import List, Optional

from knowledge_pipeline.config import settings


@dataclass
class TextWindow:
    """One chunk of text and where it starts in the source."""
    start: int
    text: str


class TextChunker:
    """Sliding-window chunker with natural break points."""

    def __init__(self, chunk_size: Optional[int] = None, chunk_overlap: Optional[int] = None):
        self.chunk_size = chunk_size or settings.chunk_size
        overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        if overlap >= self.chunk_size // 2:
            raise ValueError("chunk_overlap must be smaller than half of chunk_size")
        self.chunk_overlap = overlap

    def _break_point(self, text: str, start: int, end: int) -> int:
        """Best end offset for the window ``text[start:end]``."""
        floor = start + self.chunk_size // 2

        paragraph_break = text.rfind("\n\n", start, end)
        if paragraph_break > floor:
            return paragraph_break + 2

        line_break = text.rfind("\n", start, end)
        if line_break > floor:
            return line_break + 1

        sentence_end = max(text.rfind(". ", start, end), text.rfind("? ", start, end), text.rfind("! ", start, end))
        if sentence_end > floor:
            return sentence_end + 2

        return end

    def split(self, text: str, min_chunk_chars: Optional[int] = None) -> List[TextWindow]:
        """
        Split text into overlapping windows.

        Args:
            text: Extracted document text
            min_chunk_chars: Windows with less stripped text are dropped unless
                they are the only window

        Returns:
            Ordered windows, possibly empty
        """
        minimum = settings.min_chunk_chars if min_chunk_chars is None else min_chunk_chars
        windows: List[TextWindow] = []
        start = 0
        length = len(text)

        while start < length:
            end = start + self.chunk_size
            if end >= length:
                windows.append(TextWindow(start=start, text=text[start:]))
                break

            end = self._break_point(text, start, end)
            windows.append(TextWindow(start=start, text=text[start:end]))
            start = end - self.chunk_overlap

        kept = [w for w in windows if len(w.text.strip()) >= minimum]
        if not kept and len(windows) == 1 and windows[0].text.strip():
            # a short document still yields its one window
            return windows
        return kept
