"""
Ingestion Value Objects
=======================

Immutable objects and pure functions for the ingestion domain:
- DocumentKind: single classification of a document, consumed by extraction,
  quality gating and chunk tagging
- ExtractionResult / TextSection: what the format extractor produced
- ContentQualityGate: rejects binary, markup-heavy, placeholder or too-short text
- Equipment term detection for processing-plant training material
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from knowledge_pipeline.config import settings, DEGRADED_METHODS, ExtractionMethod


# ========== Document classification ==========

class DocumentKind(str, Enum):
    """How a document is treated by every ingestion stage."""
    STANDARD = "standard"
    GOVERNANCE = "governance"
    TRAINING_SLIDE = "training_slide"
    ORG_PROFILE = "org_profile"

    @property
    def relaxed_quality(self) -> bool:
        """Governance, training and profile material tolerates sparser text."""
        return self is not DocumentKind.STANDARD

    @property
    def chunk_tag(self) -> Optional[str]:
        return _KIND_TAGS.get(self)


_KIND_TAGS = {
    DocumentKind.GOVERNANCE: "governance",
    DocumentKind.TRAINING_SLIDE: "training-material",
    DocumentKind.ORG_PROFILE: "org-profile",
}

SLIDE_DECK_EXTENSIONS = {".pptx", ".pptm"}
SLIDE_DECK_MIME_PREFIX = "application/vnd.openxmlformats-officedocument.presentationml"

_GOVERNANCE_TYPES = {"governance", "governance_manifest", "criteria", "framework", "policy"}
_TRAINING_TYPES = {"training", "training_slide", "training_material"}
_PROFILE_TYPES = {"org_profile", "organization_profile", "company_profile"}
_GOVERNANCE_TITLE = re.compile(r"\b(governance|reasoning manifest|maturity framework)\b", re.I)
_PROFILE_TITLE = re.compile(r"\b(organi[sz]ation(al)? profile|company profile|org profile)\b", re.I)


def classify_document(
    title: str,
    file_name: str,
    mime_type: Optional[str],
    document_type: Optional[str] = None,
    governance_flag: bool = False,
) -> DocumentKind:
    """
    Classify a document once per processing run.

    Precedence: explicit governance flag, slide-deck format, declared
    document type, then title keywords.
    """
    if governance_flag:
        return DocumentKind.GOVERNANCE

    lowered_name = (file_name or "").lower()
    is_deck = any(lowered_name.endswith(ext) for ext in SLIDE_DECK_EXTENSIONS) or (
        (mime_type or "").startswith(SLIDE_DECK_MIME_PREFIX)
    )
    doc_type = (document_type or "").lower()

    if is_deck or doc_type in _TRAINING_TYPES:
        return DocumentKind.TRAINING_SLIDE
    if doc_type in _PROFILE_TYPES or _PROFILE_TITLE.search(title or ""):
        return DocumentKind.ORG_PROFILE
    if doc_type in _GOVERNANCE_TYPES or _GOVERNANCE_TITLE.search(title or ""):
        return DocumentKind.GOVERNANCE
    return DocumentKind.STANDARD


@dataclass(frozen=True)
class ProcessingOptions:
    """Flags accepted by the upload trigger."""
    force_reprocess: bool = False
    emergency_chunking: bool = False
    governance_document: bool = False
    dry_run: bool = False


# ========== Extraction output ==========

@dataclass
class TextSection:
    """A labelled span of the extracted text (e.g. one slide)."""
    label: str
    start: int
    end: int


@dataclass
class ExtractionResult:
    """Plain text pulled from a document plus provenance."""
    text: str
    method: str
    slide_count: Optional[int] = None
    sections: List[TextSection] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    binary_ratio: float = 0.0
    error: Optional[str] = None
    title: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.method in DEGRADED_METHODS

    def label_at(self, offset: int) -> Optional[str]:
        """Label of the section containing a character offset."""
        for section in self.sections:
            if section.start <= offset < section.end:
                return section.label
        return None


# ========== Content quality gate ==========

PLACEHOLDER_PATTERNS: Dict[str, re.Pattern] = {
    "criterion_letter": re.compile(r"\bCriterion [A-Z]\b"),
    "bracket_token": re.compile(r"\[(document_type|organization|insert[^\]]*|name|date|tbd)\]", re.I),
    "placeholder": re.compile(r"\bplaceholder\b", re.I),
    "lorem_ipsum": re.compile(r"\blorem ipsum\b", re.I),
    "template": re.compile(r"\btemplate\b", re.I),
    "tbd": re.compile(r"\b(TBD|TBC|to be determined)\b"),
    "insert_here": re.compile(r"\binsert\b[^.\n]{0,40}\bhere\b", re.I),
    "sample_text": re.compile(r"\b(sample|example) (text|content)\b", re.I),
}

_MARKUP_TAG = re.compile(r"<[^<>\n]{1,200}>")
_WORD = re.compile(r"\S+")


@dataclass
class QualityReport:
    """Outcome of the content-quality gate."""
    passed: bool
    score: float
    reasons: List[str] = field(default_factory=list)
    word_count: int = 0
    relaxed: bool = False

    def as_metadata(self) -> dict:
        return {
            "passed": self.passed,
            "score": self.score,
            "reasons": list(self.reasons),
            "word_count": self.word_count,
            "relaxed": self.relaxed,
        }


class ContentQualityGate:
    """
    Heuristic checks on extracted text.

    Thresholds come from settings; governance, training-slide and org-profile
    documents get the relaxed word and uniqueness minimums and twice the
    markup/binary allowance. Emergency-mode runs skip the gate entirely.
    """

    def evaluate(self, extraction: ExtractionResult, kind: DocumentKind) -> QualityReport:
        relaxed = kind.relaxed_quality
        text = extraction.text or ""
        words = _WORD.findall(text)
        word_count = len(words)

        min_words = settings.quality_min_words_relaxed if relaxed else settings.quality_min_words
        min_unique = (
            settings.quality_min_unique_ratio_relaxed if relaxed
            else settings.quality_min_unique_ratio
        )
        allowance = 2.0 if relaxed else 1.0

        checks: List[Tuple[bool, str]] = []

        if extraction.method == ExtractionMethod.EXTRACTION_FAILED:
            checks.append((False, f"extraction failed: {extraction.error or 'unknown error'}"))

        checks.append((word_count >= min_words, f"too short: {word_count} words (minimum {min_words})"))

        if word_count:
            unique_ratio = len({w.lower() for w in words}) / word_count
            checks.append((
                unique_ratio >= min_unique,
                f"repetitive content: unique-word ratio {unique_ratio:.2f} (minimum {min_unique})"
            ))

        visible = [c for c in text if not c.isspace()]
        alpha_ratio = sum(c.isalpha() for c in visible) / len(visible) if visible else 0.0
        checks.append((
            alpha_ratio >= settings.quality_min_alpha_ratio,
            f"low alphabetic ratio {alpha_ratio:.2f}"
        ))

        markup_chars = sum(len(m) for m in _MARKUP_TAG.findall(text))
        markup_ratio = markup_chars / len(text) if text else 0.0
        checks.append((
            markup_ratio <= settings.quality_max_markup_ratio * allowance,
            f"markup artifacts {markup_ratio:.2f} of text"
        ))

        checks.append((
            extraction.binary_ratio <= settings.quality_max_binary_ratio * allowance,
            f"binary content {extraction.binary_ratio:.2f} of payload"
        ))

        matches, kinds = count_placeholders(text)
        checks.append((
            matches <= settings.quality_max_placeholder_matches
            and kinds <= settings.quality_max_placeholder_types,
            f"placeholder content: {matches} matches across {kinds} patterns"
        ))

        reasons = [reason for ok, reason in checks if not ok]
        score = round(sum(ok for ok, _ in checks) / len(checks), 3)
        return QualityReport(
            passed=not reasons,
            score=score,
            reasons=reasons,
            word_count=word_count,
            relaxed=relaxed,
        )


def count_placeholders(text: str) -> Tuple[int, int]:
    """Total placeholder matches and number of distinct patterns matched."""
    total = 0
    kinds = 0
    for pattern in PLACEHOLDER_PATTERNS.values():
        found = len(pattern.findall(text))
        if found:
            total += found
            kinds += 1
    return total, kinds


# ========== Equipment detection ==========

EQUIPMENT_TERMS: Dict[str, List[str]] = {
    "crusher-jaw": ["jaw crusher", "primary crusher", "jaw crushing"],
    "crusher-cone": ["cone crusher", "secondary crusher", "cone crushing"],
    "dms-cyclone": ["dms", "dense media separation", "cyclone", "density separation"],
    "xrt-sorter": ["xrt", "x-ray transmission", "optical sorting", "automated sorting"],
    "banana-screen": ["banana screen", "vibrating screen"],
    "grease-belt": ["grease belt", "adhesion belt", "belt concentration"],
    "pan-conveyor": ["pan conveyor", "conveyor belt"],
    "wash-plant": ["wash plant", "scrubbing"],
    "jigging-machine": ["jig", "jigging", "gravity separation"],
    "recovery-plant": ["recovery plant", "diamond recovery", "final recovery"],
}

_EQUIPMENT_PATTERNS = {
    slug: re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.I)
    for slug, keywords in EQUIPMENT_TERMS.items()
}

# Checked in order; first stage with a keyword hit wins
STAGE_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("exploration", ("exploration", "prospect")),
    ("mining", ("mining", "extraction")),
    ("processing", ("processing", "crusher", "dms")),
    ("sorting", ("sorting", "xrt", "optical")),
    ("selling", ("selling", "marketing", "retail")),
]


def detect_equipment(text: str) -> List[str]:
    """Equipment slugs mentioned in the text, in catalogue order."""
    return [slug for slug, pattern in _EQUIPMENT_PATTERNS.items() if pattern.search(text)]


def determine_stage(text: str) -> str:
    """Value-chain stage a piece of training material covers."""
    lowered = text.lower()
    for stage, keywords in STAGE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return stage
    return "processing"


def training_slide_title(file_name: str, stage: str) -> str:
    """Display title for a training deck, e.g. ``Training - Processing - plant intro``."""
    base = re.sub(r"\.(pptm|pptx)$", "", file_name, flags=re.I)
    base = re.sub(r"[-_]", " ", base)
    return f"Training - {stage.capitalize()} - {base}"
