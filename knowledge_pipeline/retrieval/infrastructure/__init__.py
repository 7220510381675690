"""
Retrieval Infrastructure Layer
==============================

Contains:
- TierConfigManager: hot-reloaded tier keyword lists (YAML + watchdog)
"""

from knowledge_pipeline.retrieval.infrastructure.tier_config import (
    TierConfigManager,
    TierConfigFileHandler,
    get_tier_config_manager,
)

__all__ = [
    "TierConfigManager",
    "TierConfigFileHandler",
    "get_tier_config_manager",
]
