"""
Gap Detection
=============

Pure functions that decide which specifics an answer failed to give.

A category is missing when the prompt asks about it and the answer carries
no concrete evidence for it. Generic hedges in the answer add
``specific details``.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

SPECIFIC_DETAILS = "specific details"


@dataclass(frozen=True)
class GapCategory:
    """One kind of specific a prompt can ask for."""
    label: str
    prompt_pattern: re.Pattern
    evidence_patterns: tuple

    def asked_in(self, prompt: str) -> bool:
        return bool(self.prompt_pattern.search(prompt))

    def evidenced_in(self, answer: str) -> bool:
        return any(pattern.search(answer) for pattern in self.evidence_patterns)


GAP_CATEGORIES: List[GapCategory] = [
    GapCategory(
        label="responsible owners",
        prompt_pattern=re.compile(r"\b(who|owners?|responsible|accountable|supervisors?|managers?)\b", re.I),
        evidence_patterns=(
            re.compile(r"\b(Manager|Officer|Supervisor|Director|Chief|Head of|Lead|Coordinator)\b"),
        ),
    ),
    GapCategory(
        label="numeric thresholds",
        prompt_pattern=re.compile(
            r"\b(thresholds?|limits?|variance|tolerances?|deviations?|how much|how many)\b", re.I
        ),
        evidence_patterns=(
            re.compile(r"\d+(\.\d+)?\s*%"),
            re.compile(r"\b\d+(\.\d+)?\s*(ppm|carats?|ct|minutes?|mins?|hours?|hrs?|days?|mg|kg)\b", re.I),
            re.compile(r"\$\s?\d"),
        ),
    ),
    GapCategory(
        label="named systems",
        prompt_pattern=re.compile(r"\b(systems?|platforms?|tools?|software)\b", re.I),
        evidence_patterns=(
            re.compile(r"\b(SAP|Oracle|SCADA|DCS|MES|ERP|CMMS|SharePoint|ServiceNow|Maximo)\b"),
            re.compile(r"\b(?!(?:The|This|That|Our|Each|Any|A|An|Every|Your)\b)[A-Z][\w-]+ ([Ss]ystem|[Pp]latform)\b"),
        ),
    ),
    GapCategory(
        label="operational cadences",
        prompt_pattern=re.compile(
            r"\b(how often|daily|weekly|monthly|quarterly|cadence|frequency|schedules?)\b", re.I
        ),
        evidence_patterns=(
            re.compile(
                r"\b(daily at|weekly on|monthly (by|on)|quarterly (in|by)|"
                r"twice (a )?(daily|day|weekly|week|monthly|month)|"
                r"every \d+ (minutes|hours|days|weeks|months)|every (shift|day|week|month))\b",
                re.I
            ),
        ),
    ),
    GapCategory(
        label="jurisdiction-specific rules",
        prompt_pattern=re.compile(
            r"\b(laws?|regulations?|regulatory|jurisdictions?|legal|statutory)\b", re.I
        ),
        evidence_patterns=(
            re.compile(r"\b[A-Z][\w-]*(?: [A-Z][\w-]*)* Act\b"),
            re.compile(r"\bRegulation \d+"),
            re.compile(r"(\bSection|§)\s?\d+"),
        ),
    ),
    GapCategory(
        label="site-specific procedures",
        prompt_pattern=re.compile(
            r"\b(site[- ]specific|location[- ]specific|facility|facilities|plants?|on[- ]site)\b", re.I
        ),
        evidence_patterns=(
            re.compile(r"\b(Plant|Site|Facility|Mine|Shaft) [A-Z0-9]\b"),
            re.compile(r"\b[A-Z][\w-]+ (Mine|Plant|Facility)\b"),
        ),
    ),
]

GENERIC_HEDGES = [
    "appropriate personnel",
    "relevant systems",
    "regular intervals",
    "applicable regulations",
    "site requirements",
    "as needed",
    "management approval",
    "established protocols",
]


def detect_missing_specifics(prompt: str, answer: str) -> List[str]:
    """
    Categories the prompt asked about that the answer left generic.

    Order follows the category list; ``specific details`` is appended once
    when the answer hedges. No duplicates.
    """
    prompt = prompt or ""
    answer = answer or ""

    missing: List[str] = []
    for category in GAP_CATEGORIES:
        if category.asked_in(prompt) and not category.evidenced_in(answer):
            missing.append(category.label)

    lowered = answer.lower()
    if any(hedge in lowered for hedge in GENERIC_HEDGES):
        missing.append(SPECIFIC_DETAILS)

    unique: List[str] = []
    for item in missing:
        if item not in unique:
            unique.append(item)
    return unique


def follow_up_due(created_at: datetime, hours: int = 48) -> datetime:
    return created_at + timedelta(hours=hours)


def format_commitment(missing_specifics: List[str], due: datetime) -> Optional[str]:
    """``I'll confirm <items> by <Mon DD, YYYY>.``; None when nothing is missing."""
    if not missing_specifics:
        return None
    return f"I'll confirm {', '.join(missing_specifics)} by {due.strftime('%b %d, %Y')}."
