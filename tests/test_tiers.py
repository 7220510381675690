"""Tests for knowledge-tier classification and keyword configuration."""

from knowledge_pipeline.config import KnowledgeTier
from knowledge_pipeline.retrieval.application.services import KnowledgeTierService
from knowledge_pipeline.retrieval.domain import (
    TierKeywords,
    build_query_variants,
    classify_knowledge_tier,
    item_pattern,
    policy_for,
)
from knowledge_pipeline.retrieval.infrastructure import TierConfigManager


class TestClassifyKnowledgeTier:

    def test_audit_work_is_internal_secure(self):
        assert classify_knowledge_tier("Compliance scoring for the vault audit") == KnowledgeTier.INTERNAL_SECURE

    def test_internal_secure_wins_over_external_keywords(self):
        context = "insider threat evidence for the maturity review"
        assert classify_knowledge_tier(context) == KnowledgeTier.INTERNAL_SECURE

    def test_threat_awareness_is_external(self):
        assert classify_knowledge_tier("Latest industry threat briefing") == KnowledgeTier.EXTERNAL_AWARENESS

    def test_everything_else_is_organizational_context(self):
        assert classify_knowledge_tier("What shift does the night crew work?") == KnowledgeTier.ORGANIZATIONAL_CONTEXT
        assert classify_knowledge_tier("") == KnowledgeTier.ORGANIZATIONAL_CONTEXT

    def test_custom_keywords(self):
        keywords = TierKeywords(internal_secure=["vault"], external_awareness=[], organizational_context=[])
        assert classify_knowledge_tier("VAULT access list", keywords) == KnowledgeTier.INTERNAL_SECURE


class TestTierPolicies:

    def test_internal_secure_excludes_degraded_sources(self):
        policy = policy_for(KnowledgeTier.INTERNAL_SECURE)
        assert policy.validation == "strict"
        assert policy.exclude_degraded_sources

    def test_external_awareness_is_advisory_only(self):
        policy = policy_for(KnowledgeTier.EXTERNAL_AWARENESS)
        assert policy.advisory_only
        assert not policy.usable_for_scoring
        assert policy.context_label == "ADVISORY ONLY"

    def test_unknown_tier_gets_standard_policy(self):
        assert policy_for("unknown").validation == "standard"


class TestTierConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path):
        keywords = TierConfigManager().load(tmp_path / "absent.yaml")
        assert keywords == TierKeywords()

    def test_yaml_lists_replace_defaults(self, tmp_path):
        path = tmp_path / "tiers.yaml"
        path.write_text("internal_secure:\n  - vault count\nexternal_awareness:\n  - smuggling\n")

        manager = TierConfigManager()
        manager.load(path)

        assert manager.keywords.internal_secure == ["vault count"]
        assert manager.keywords.external_awareness == ["smuggling"]
        assert manager.keywords.organizational_context == TierKeywords().organizational_context

    def test_reload_picks_up_changes_and_keeps_lists_on_bad_yaml(self, tmp_path):
        path = tmp_path / "tiers.yaml"
        path.write_text("external_awareness:\n  - smuggling\n")
        manager = TierConfigManager()
        manager.load(path)

        path.write_text("external_awareness:\n  - theft ring\n")
        assert manager.reload() is True
        assert manager.keywords.external_awareness == ["theft ring"]

        path.write_text("external_awareness: [unclosed\n")
        assert manager.reload() is False
        assert manager.keywords.external_awareness == ["theft ring"]

    def test_reload_before_load_is_a_no_op(self):
        assert TierConfigManager().reload() is False

    def test_stop_watching_without_start(self):
        TierConfigManager().stop_watching()

    def test_tier_service_uses_current_keywords(self, tmp_path):
        path = tmp_path / "tiers.yaml"
        path.write_text("external_awareness:\n  - smuggling\n")
        manager = TierConfigManager()
        manager.load(path)

        tier, policy = KnowledgeTierService(manager).classify("smuggling routes near the plant")

        assert tier == KnowledgeTier.EXTERNAL_AWARENESS
        assert policy.advisory_only


class TestQueryHelpers:

    def test_item_variants_come_first(self):
        variants = build_query_variants("Seal checks", "Security", 7)

        assert variants[:3] == ["MPS 7", "Seal checks MPS 7", "Security MPS 7"]
        assert "seal checks" in variants
        assert len(variants) == len(set(variants))

    def test_variants_are_capped(self):
        assert len(build_query_variants("Seal checks", None, 7, limit=2)) == 2

    def test_item_pattern_is_exact(self):
        pattern = item_pattern(7)
        assert pattern.search("see MPS 7 for detail")
        assert pattern.search("MPS7 requirements")
        assert not pattern.search("MPS 17 requirements")
