"""
Config Store - persisted index manager configuration.

Loads and saves the JSON document declaring collections, topics and index
pages. Writes are atomic and keep one backup generation.
"""

import json
import os
import shutil
import logging
from typing import Dict, List, Optional

from src.errors import ValidationError
from src.models.topic import CollectionSource, TopicDescriptor

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"


class ConfigStore:
    """
    JSON configuration document on disk.

    Shape:
        {
          "version": "1.0.0",
          "collections": [{"id", "name", "searchEnabled"}],
          "indexPages": [{"nodeIdentity", "collectionId", "title", "topicIds", "autoUpdate"}],
          "topics": {"<id>": {"id", "name", "keywords", "includePatterns", "excludePatterns", "priority"}}
        }
    """

    def __init__(self, config_path: str):
        """
        Initialize store from disk, or empty if the file doesn't exist yet.

        Args:
            config_path: Path to the configuration JSON file
        """
        self.config_path = config_path
        self.version = CONFIG_VERSION
        self.collections: Dict[str, CollectionSource] = {}
        self.topics: Dict[str, TopicDescriptor] = {}
        self.index_pages: List[dict] = []

        if os.path.exists(config_path):
            self._load()
        else:
            logger.info(f"No configuration found at {config_path}, starting empty")

    @property
    def exists(self) -> bool:
        return os.path.exists(self.config_path)

    def _load(self) -> None:
        """Load configuration from disk."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._apply(data)
            logger.info(
                f"Loaded configuration: {len(self.collections)} collections, "
                f"{len(self.topics)} topics, {len(self.index_pages)} index pages"
            )
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse configuration JSON: {e}")
            self._try_restore_from_backup()

    def _apply(self, data: dict) -> None:
        self.version = data.get("version", CONFIG_VERSION)
        self.collections = {}
        for entry in data.get("collections", []):
            collection = CollectionSource.from_dict(entry)
            self.collections[collection.id] = collection

        self.topics = {}
        for topic_id, entry in (data.get("topics") or {}).items():
            entry = dict(entry)
            entry.setdefault("id", topic_id)
            self.topics[topic_id] = TopicDescriptor.from_dict(entry)

        self.index_pages = [self._validate_page_entry(e) for e in data.get("indexPages", [])]

    def _try_restore_from_backup(self) -> None:
        """Attempt to restore from the backup file if the main file is corrupted."""
        backup_path = f"{self.config_path}.backup"
        if not os.path.exists(backup_path):
            logger.warning("No backup file found. Starting with empty configuration.")
            return

        logger.warning(f"Attempting to restore from backup: {backup_path}")
        try:
            with open(backup_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._apply(data)
            shutil.copy(backup_path, self.config_path)
            logger.info("Successfully restored from backup")
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Backup restoration failed: {e}. Starting with empty configuration.")
            self.collections, self.topics, self.index_pages = {}, {}, []

    @staticmethod
    def _validate_page_entry(entry: dict) -> dict:
        for key in ("nodeIdentity", "collectionId"):
            if not entry.get(key):
                raise ValidationError(f"Index page entry missing '{key}': {entry}")
        return {
            "nodeIdentity": entry["nodeIdentity"],
            "collectionId": entry["collectionId"],
            "title": entry.get("title") or entry["nodeIdentity"],
            "topicIds": list(entry.get("topicIds", [])),
            "autoUpdate": entry.get("autoUpdate", True) is not False
        }

    def add_collection(self, collection_id: str, name: str = "", search_enabled: bool = True) -> bool:
        """
        Add a collection to search.

        Returns:
            False if the collection was already configured
        """
        if collection_id in self.collections:
            return False
        self.collections[collection_id] = CollectionSource(collection_id, name, search_enabled)
        return True

    def add_topic(self, topic: TopicDescriptor) -> bool:
        """
        Add a topic.

        Returns:
            False if a topic with that id already exists
        """
        if topic.id in self.topics:
            return False
        self.topics[topic.id] = topic
        return True

    def add_index_page(
        self,
        node_identity: str,
        collection_id: Optional[str] = None,
        title: Optional[str] = None,
        topic_ids: Optional[List[str]] = None,
        auto_update: bool = True
    ) -> bool:
        """
        Add an index page entry.

        Collection defaults to the first configured collection.

        Returns:
            False if the index page was already configured

        Raises:
            ValidationError: If a topic id is unknown or no collection can be determined
        """
        if any(p["nodeIdentity"] == node_identity for p in self.index_pages):
            return False

        topic_ids = topic_ids or []
        unknown = [t for t in topic_ids if t not in self.topics]
        if unknown:
            raise ValidationError(f"Unknown topic ids: {', '.join(unknown)}", identity=node_identity)

        collection_id = collection_id or next(iter(self.collections), None)
        self.index_pages.append(self._validate_page_entry({
            "nodeIdentity": node_identity,
            "collectionId": collection_id,
            "title": title,
            "topicIds": topic_ids,
            "autoUpdate": auto_update
        }))
        return True

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "collections": [c.to_dict() for c in self.collections.values()],
            "indexPages": [dict(p) for p in self.index_pages],
            "topics": {topic_id: t.to_dict() for topic_id, t in self.topics.items()}
        }

    def save(self) -> None:
        """
        Persist configuration to disk with atomic write pattern.
        Creates backup before write.
        """
        directory = os.path.dirname(os.path.abspath(self.config_path))
        os.makedirs(directory, exist_ok=True)

        if os.path.exists(self.config_path):
            backup_path = f"{self.config_path}.backup"
            shutil.copy(self.config_path, backup_path)
            logger.debug(f"Created backup: {backup_path}")

        temp_path = f"{self.config_path}.tmp"
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.config_path)
            logger.info(f"Configuration saved to {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise


def create_default_config(config_path: str) -> ConfigStore:
    """Build a starter configuration with one catch-all topic."""
    store = ConfigStore(config_path)
    store.add_topic(TopicDescriptor(
        id="general",
        name="General",
        keywords=("document",)
    ))
    return store
