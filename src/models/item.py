"""
Discovered item and shortcut record models.

DiscoveredItem is produced per crawl pass from raw search hits.
ShortcutRecord is appended for every reference link the manager creates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


@dataclass
class DiscoveredItem:
    """
    A content item found by a keyword search.
    Ephemeral: lives for one crawl pass only.
    """
    identity: str  # Canonical cross-collection key
    title: str
    source_collection_id: str
    content: str = ""
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_search_hit(cls, hit: dict, collection_id: str) -> Optional["DiscoveredItem"]:
        """
        Build an item from a raw search hit.

        Identity is the hit's node token if present, else its object token.

        Returns:
            DiscoveredItem, or None if the hit carries neither token
        """
        identity = hit.get("node_token") or hit.get("obj_token")
        if not identity:
            return None

        return cls(
            identity=identity,
            title=hit.get("title") or "",
            source_collection_id=hit.get("space_id") or collection_id,
            content=hit.get("content") or "",
            raw=hit
        )

    @property
    def match_text(self) -> str:
        """Lower-cased text the topic patterns are evaluated against."""
        return f"{self.title} {self.content}".lower()


@dataclass
class ShortcutRecord:
    """
    A reference link created from an index document to a content item.
    """
    target_identity: str
    target_title: str
    target_collection_id: str
    index_node_identity: str
    topic_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    matched_keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "target_identity": self.target_identity,
            "target_title": self.target_title,
            "target_collection_id": self.target_collection_id,
            "index_node_identity": self.index_node_identity,
            "topic_id": self.topic_id,
            "created_at": self.created_at.isoformat(),
            "matched_keywords": list(self.matched_keywords)
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShortcutRecord":
        return cls(
            target_identity=data["target_identity"],
            target_title=data.get("target_title", ""),
            target_collection_id=data.get("target_collection_id", ""),
            index_node_identity=data["index_node_identity"],
            topic_id=data.get("topic_id", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            matched_keywords=data.get("matched_keywords", [])
        )
