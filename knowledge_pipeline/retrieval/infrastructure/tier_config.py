"""
Knowledge Tier Configuration
============================

Keyword lists for the knowledge-tier classifier, read from
``knowledge_tiers.yaml`` and hot-reloaded with watchdog.

A missing file means the built-in defaults; a file that fails to parse on
reload keeps the previous lists.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from knowledge_pipeline.config import settings
from knowledge_pipeline.retrieval.domain import TierKeywords
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TierConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for tier keyword file changes."""

    def __init__(self, config_manager: "TierConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Tier keyword file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    on_created = on_modified


class TierConfigManager:
    """
    Thread-safe tier keyword manager with hot-reload support.

    The watchdog observer thread swaps the keyword lists under a lock; request
    handlers read them through ``keywords``.
    """

    def __init__(self):
        self._keywords: Optional[TierKeywords] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Optional[Path] = None) -> TierKeywords:
        """Initial load; defaults when the file does not exist."""
        self._path = Path(path or settings.tier_config_path)
        keywords = self._load_from_file(self._path)
        with self._lock:
            self._keywords = keywords
        return keywords

    def _load_from_file(self, path: Path) -> TierKeywords:
        if not path.exists():
            logger.warning("Tier keyword file not found, using defaults", extra={"path": str(path)})
            return TierKeywords()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return TierKeywords(**data)

    def reload(self) -> bool:
        """Reload keyword lists from file."""
        if self._path is None:
            return False

        try:
            keywords = self._load_from_file(self._path)
        except Exception as e:
            logger.error("Failed to reload tier keywords", extra={"error": str(e)})
            return False

        with self._lock:
            self._keywords = keywords
        logger.info("Tier keywords reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Watch the keyword file for changes.

        Skipped when the file does not exist or the platform has no file
        watching support.
        """
        if self._path is None:
            raise RuntimeError("Tier config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Tier keyword file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                TierConfigFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching tier keyword file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static tier keywords", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def keywords(self) -> TierKeywords:
        with self._lock:
            if self._keywords is None:
                self._keywords = TierKeywords()
            return self._keywords


# Global manager instance
_tier_config_manager: Optional[TierConfigManager] = None


def get_tier_config_manager() -> TierConfigManager:
    """Get or create the global tier config manager (loads on first use)."""
    global _tier_config_manager
    if _tier_config_manager is None:
        _tier_config_manager = TierConfigManager()
        _tier_config_manager.load()
    return _tier_config_manager
