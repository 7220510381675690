"""
Retrieval Value Objects
=======================

Knowledge-tier classification and query helpers.

Tiers follow the knowledge source policy:
- INTERNAL_SECURE: audit and compliance work, strict validation
- EXTERNAL_AWARENESS: threat awareness, advisory only
- ORGANIZATIONAL_CONTEXT: everything else, standard validation
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field

from knowledge_pipeline.config import KnowledgeTier


@dataclass(frozen=True)
class TierPolicy:
    """What a tier allows the assembler and the assistant to do."""
    validation: str
    exclude_degraded_sources: bool = False
    advisory_only: bool = False
    usable_for_scoring: bool = True
    context_label: Optional[str] = None


TIER_POLICIES = {
    KnowledgeTier.INTERNAL_SECURE: TierPolicy(
        validation="strict",
        exclude_degraded_sources=True,
    ),
    KnowledgeTier.EXTERNAL_AWARENESS: TierPolicy(
        validation="advisory",
        advisory_only=True,
        usable_for_scoring=False,
        context_label="ADVISORY ONLY",
    ),
    KnowledgeTier.ORGANIZATIONAL_CONTEXT: TierPolicy(validation="standard"),
}


def policy_for(tier: str) -> TierPolicy:
    return TIER_POLICIES.get(tier, TIER_POLICIES[KnowledgeTier.ORGANIZATIONAL_CONTEXT])


class TierKeywords(BaseModel):
    """Keyword lists per tier, loaded from knowledge_tiers.yaml."""

    internal_secure: List[str] = Field(default_factory=lambda: [
        "MPS generation", "Intent statement generation", "Criteria development",
        "Audit structure", "Maturity level assessment", "Compliance scoring",
        "Roadmap progression", "Domain content creation", "Maturity framework development",
        "evidence", "scoring", "compliance",
    ])
    external_awareness: List[str] = Field(default_factory=lambda: [
        "threat", "risk horizon", "industry threat", "surveillance", "awareness",
        "threat detection", "emerging threat", "situational awareness", "risk intelligence",
        "threat trend", "insider threat", "diamond sector", "threat alert",
    ])
    organizational_context: List[str] = Field(default_factory=lambda: [
        "organization", "structure", "size", "roles", "departments", "team",
        "onboarding", "metadata", "context", "tailoring",
    ])


def classify_knowledge_tier(context: str, keywords: Optional[TierKeywords] = None) -> str:
    """
    Pick the knowledge tier for a request context.

    Case-insensitive substring match. INTERNAL_SECURE is checked first, then
    EXTERNAL_AWARENESS; anything else is ORGANIZATIONAL_CONTEXT.
    """
    keywords = keywords or TierKeywords()
    lowered = (context or "").lower()

    if any(k.lower() in lowered for k in keywords.internal_secure if k):
        return KnowledgeTier.INTERNAL_SECURE
    if any(k.lower() in lowered for k in keywords.external_awareness if k):
        return KnowledgeTier.EXTERNAL_AWARENESS
    return KnowledgeTier.ORGANIZATIONAL_CONTEXT


# ========== Query helpers ==========

_FRAMEWORK_CONTENT = re.compile(r"\b(maturity|level [1-5]|levels?|framework)\b", re.I)


def item_pattern(item_number: int) -> re.Pattern:
    """Matches ``MPS 7`` and ``MPS7`` but not ``MPS 17``."""
    return re.compile(rf"\bMPS\s?{item_number}\b", re.I)


def build_query_variants(
    query: str,
    domain: Optional[str] = None,
    target_item_number: Optional[int] = None,
    limit: int = 8
) -> List[str]:
    """
    Search variants for one query, de-duplicated and capped at ``limit``.

    Item-specific variants come first so they survive the cap.
    """
    base = (query or "").strip()
    variants: List[str] = []

    if target_item_number is not None:
        tag = f"MPS {target_item_number}"
        variants.append(tag)
        if base:
            variants.append(f"{base} {tag}")
        variants.append(f"{domain} {tag}" if domain else f"{tag} requirements")

    if base:
        variants.extend([
            base,
            base.lower(),
            f"{base} requirements",
            f"{base} criteria",
            f"{base} audit",
        ])

    unique: List[str] = []
    for variant in variants:
        if variant and variant not in unique:
            unique.append(variant)
    return unique[:limit]


def is_framework_content(text: str) -> bool:
    return bool(_FRAMEWORK_CONTENT.search(text or ""))
