"""
Format Extraction
=================

Converts stored document bytes into plain text plus an extraction-method label.

- Word documents: python-docx paragraphs and tables, after a ZIP signature check
- Slide decks: python-pptx slide text and speaker notes
- PDF: PyMuPDF page text, labelled degraded; unreadable files fall back to raw decode
- Other binaries: best-effort raw decode, always degraded
- Text formats: direct decode

``FormatExtractor.extract`` never raises. A failure becomes synthetic text
describing it so later stages always have input.
"""

import io
import re
from typing import List, Optional, Tuple

import docx
import fitz
from pptx import Presentation

from knowledge_pipeline.config import ExtractionMethod
from knowledge_pipeline.core import ExtractionException
from knowledge_pipeline.ingestion.domain import (
    DocumentKind,
    ExtractionResult,
    TextSection,
    determine_stage,
    training_slide_title,
)
from knowledge_pipeline.ingestion.domain.value_objects import SLIDE_DECK_EXTENSIONS, SLIDE_DECK_MIME_PREFIX
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"

WORD_EXTENSIONS = {".docx", ".doc"}
WORD_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
}
TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".csv", ".json", ".html", ".htm", ".xml", ".yaml", ".yml"}
TEXT_MIME_TYPES = {"application/json", "application/xml", "application/x-yaml"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e\t\n\r]{3,}")
_HAS_LETTER = re.compile(r"[A-Za-z]")


def sanitize_text(text: str) -> str:
    """Strip control characters, BOMs and replacement characters; tidy blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\ufeff", "").replace("\ufffd", "")
    text = _CONTROL_CHARS.sub("", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def binary_ratio(data: bytes) -> float:
    """Share of bytes that are control characters other than common whitespace."""
    if not data:
        return 0.0
    control = sum(1 for b in data if b < 32 and b not in (9, 10, 13))
    return control / len(data)


def printable_runs(data: bytes) -> str:
    """Readable ASCII runs of three or more characters that contain a letter."""
    runs = []
    for match in _PRINTABLE_RUN.finditer(data):
        run = match.group().decode("ascii", errors="ignore").strip()
        if run and _HAS_LETTER.search(run):
            runs.append(run)
    return " ".join(runs)


class FormatExtractor:
    """Chooses a reader by file extension and declared media type."""

    def extract(
        self,
        data: bytes,
        file_name: str,
        mime_type: Optional[str],
        title: str,
        kind: DocumentKind = DocumentKind.STANDARD,
    ) -> ExtractionResult:
        """
        Extract plain text from a document payload.

        Args:
            data: Raw file bytes
            file_name: Original file name (extension drives format choice)
            mime_type: Declared media type, may be None
            title: Document title, used in synthetic failure text
            kind: Document classification for the run

        Returns:
            ExtractionResult; never raises
        """
        extension = self._extension(file_name)
        mime = (mime_type or "").lower()

        try:
            if extension in SLIDE_DECK_EXTENSIONS or mime.startswith(SLIDE_DECK_MIME_PREFIX):
                result = self._extract_pptx(data, file_name)
            elif extension in WORD_EXTENSIONS or mime in WORD_MIME_TYPES:
                result = self._extract_docx(data)
            elif extension == ".pdf" or mime == "application/pdf":
                result = self._extract_pdf(data)
            elif extension in TEXT_EXTENSIONS or mime.startswith("text/") or mime in TEXT_MIME_TYPES:
                result = self._extract_text(data)
            else:
                result = self._extract_binary(data)
        except Exception as e:
            logger.warning(
                "Extraction failed, substituting synthetic text",
                extra={"file_name": file_name, "error": str(e), "error_type": type(e).__name__}
            )
            return self.failure_result(title, str(e))

        if kind is DocumentKind.TRAINING_SLIDE and "training-material" not in result.tags:
            result.tags.append("training-material")

        if not result.text:
            return self.failure_result(title, f"no readable text found ({result.method})")
        return result

    @staticmethod
    def failure_result(title: str, reason: str) -> ExtractionResult:
        """Synthetic text standing in for a document that could not be read."""
        return ExtractionResult(
            text=f"Extraction failed for {title}: manual review required ({reason})",
            method=ExtractionMethod.EXTRACTION_FAILED,
            error=reason,
        )

    @staticmethod
    def _extension(file_name: str) -> str:
        name = (file_name or "").lower()
        return name[name.rfind("."):] if "." in name else ""

    # ---------- Word ----------

    def _extract_docx(self, data: bytes) -> ExtractionResult:
        if not data.startswith(ZIP_SIGNATURE):
            logger.warning("Word file lacks ZIP container signature, using raw decode")
            return self._raw_docx_fallback(data, "missing container signature")

        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as e:
            logger.warning("python-docx could not open container", extra={"error": str(e)})
            return self._raw_docx_fallback(data, str(e))

        parts: List[str] = []
        sections: List[TextSection] = []
        offset = 0
        heading: Optional[str] = None

        def append(text: str) -> None:
            nonlocal offset
            if parts:
                offset += 2
            start = offset
            parts.append(text)
            offset += len(text)
            if heading:
                sections.append(TextSection(label=heading, start=start, end=offset))

        for paragraph in document.paragraphs:
            text = sanitize_text(paragraph.text)
            if not text:
                continue
            style_name = (paragraph.style.name or "").lower() if paragraph.style is not None else ""
            if "heading" in style_name or style_name == "title":
                heading = text
            append(text)

        heading = None
        for table in document.tables:
            rows = []
            for row in table.rows:
                cells = [sanitize_text(cell.text) for cell in row.cells]
                if any(cells):
                    rows.append(" | ".join(cells))
            if rows:
                append("\n".join(rows))

        return ExtractionResult(
            text="\n\n".join(parts),
            method=ExtractionMethod.DOCX_STRUCTURED,
            sections=sections,
        )

    def _raw_docx_fallback(self, data: bytes, reason: str) -> ExtractionResult:
        return ExtractionResult(
            text=sanitize_text(printable_runs(data)),
            method=ExtractionMethod.DOCX_RAW_FALLBACK,
            binary_ratio=binary_ratio(data),
            error=reason,
        )

    # ---------- Slides ----------

    def _extract_pptx(self, data: bytes, file_name: str) -> ExtractionResult:
        if not data.startswith(ZIP_SIGNATURE):
            raise ExtractionException("slide deck lacks ZIP container signature")

        presentation = Presentation(io.BytesIO(data))
        blocks: List[Tuple[str, str]] = []

        for number, slide in enumerate(presentation.slides, start=1):
            lines: List[str] = []
            for shape in slide.shapes:
                if shape.has_text_frame:
                    for paragraph in shape.text_frame.paragraphs:
                        line = "".join(run.text for run in paragraph.runs).strip()
                        if line:
                            lines.append(line)
                if shape.has_table:
                    for row in shape.table.rows:
                        cells = [cell.text.strip() for cell in row.cells]
                        if any(cells):
                            lines.append(" | ".join(cells))

            if slide.has_notes_slide and slide.notes_slide.notes_text_frame is not None:
                notes = slide.notes_slide.notes_text_frame.text.strip()
                if notes:
                    lines.append(f"Speaker notes: {notes}")

            blocks.append((f"Slide {number}", "\n".join(lines)))

        parts: List[str] = []
        sections: List[TextSection] = []
        offset = 0
        for label, body in blocks:
            block = f"--- {label} ---\n{sanitize_text(body)}".rstrip()
            if parts:
                offset += 2
            sections.append(TextSection(label=label, start=offset, end=offset + len(block)))
            parts.append(block)
            offset += len(block)

        text = "\n\n".join(parts)
        stage = determine_stage(text)
        return ExtractionResult(
            text=text,
            method=ExtractionMethod.PPTX_SLIDES,
            slide_count=len(blocks),
            sections=sections,
            tags=["training-material", f"stage-{stage}"],
            title=training_slide_title(file_name, stage),
        )

    # ---------- PDF / binary ----------

    def _extract_pdf(self, data: bytes) -> ExtractionResult:
        try:
            pdf = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            logger.warning(
                "PDF could not be opened, decoding printable runs",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            return ExtractionResult(
                text=sanitize_text(printable_runs(data)),
                method=ExtractionMethod.PDF_RAW,
                binary_ratio=binary_ratio(data),
                error=str(e),
            )

        with pdf:
            pages = [page.get_text("text") for page in pdf]

        raw = "\n".join(pages)
        parts: List[str] = []
        sections: List[TextSection] = []
        offset = 0
        for number, page_text in enumerate(pages, start=1):
            body = sanitize_text(page_text)
            if not body:
                continue
            if parts:
                offset += 2
            sections.append(TextSection(label=f"Page {number}", start=offset, end=offset + len(body)))
            parts.append(body)
            offset += len(body)

        return ExtractionResult(
            text="\n\n".join(parts),
            method=ExtractionMethod.PDF_RAW,
            sections=sections,
            binary_ratio=len(_CONTROL_CHARS.findall(raw)) / len(raw) if raw else 0.0,
        )

    def _extract_binary(self, data: bytes) -> ExtractionResult:
        return ExtractionResult(
            text=sanitize_text(printable_runs(data)),
            method=ExtractionMethod.BINARY_RAW,
            binary_ratio=binary_ratio(data),
        )

    # ---------- Text ----------

    def _extract_text(self, data: bytes) -> ExtractionResult:
        decoded = data.decode("utf-8", errors="replace")
        noise = decoded.count("\ufffd") + len(_CONTROL_CHARS.findall(decoded))
        return ExtractionResult(
            text=sanitize_text(decoded),
            method=ExtractionMethod.PLAIN_TEXT,
            binary_ratio=noise / len(decoded) if decoded else 0.0,
        )
