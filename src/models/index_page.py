"""
Index page data model.

An index document that aggregates reference links for one or more topics.
"""

from dataclasses import dataclass, field
from typing import List

from src.errors import ValidationError
from src.models.topic import TopicDescriptor


@dataclass
class IndexPageDescriptor:
    """
    Declared mapping of one index document to the topics it must reflect.
    Keyed by node_identity.
    """
    node_identity: str  # Token of the index document itself
    collection_id: str  # Collection the index document lives in
    title: str
    topics: List[TopicDescriptor] = field(default_factory=list)
    auto_update: bool = True  # False: skipped by bulk runs, still updatable directly

    def __post_init__(self):
        if not self.node_identity:
            raise ValidationError("Index page node identity must not be empty")
        if not self.collection_id:
            raise ValidationError(
                f"Index page {self.node_identity} has no collection id",
                identity=self.node_identity
            )

    @property
    def topic_ids(self) -> List[str]:
        return [topic.id for topic in self.topics]

    def to_dict(self) -> dict:
        """Convert to the persisted config shape (topics by id)."""
        return {
            "nodeIdentity": self.node_identity,
            "collectionId": self.collection_id,
            "title": self.title,
            "topicIds": self.topic_ids,
            "autoUpdate": self.auto_update
        }
