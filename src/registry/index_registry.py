"""
In-memory registries for one index manager instance.

- CollectionRegistry: collections that crawls search
- TopicCatalog: topic descriptors by id
- IndexPageRegistry: index documents and the topics they reflect
"""

import logging
from typing import Dict, Iterable, List, Optional

from src.errors import ValidationError
from src.models.index_page import IndexPageDescriptor
from src.models.topic import CollectionSource, TopicDescriptor

logger = logging.getLogger(__name__)


class CollectionRegistry:
    """Collections known to this instance, in registration order."""

    def __init__(self):
        self.collections: Dict[str, CollectionSource] = {}

    def register(self, collection: CollectionSource) -> CollectionSource:
        """
        Register a collection. Re-registering an id replaces its settings.
        """
        if collection.id in self.collections:
            logger.info(f"Updating collection {collection.id}")
        else:
            logger.info(f"Registered collection: {collection.name} ({collection.id})")
        self.collections[collection.id] = collection
        return collection

    def get(self, collection_id: str) -> Optional[CollectionSource]:
        return self.collections.get(collection_id)

    def require(self, collection_id: str) -> CollectionSource:
        collection = self.collections.get(collection_id)
        if collection is None:
            raise ValidationError(
                f"Collection not registered: {collection_id}",
                identity=collection_id
            )
        return collection

    def searchable(self) -> List[CollectionSource]:
        return [c for c in self.collections.values() if c.search_enabled]

    def __len__(self) -> int:
        return len(self.collections)

    def __iter__(self):
        return iter(list(self.collections.values()))


class TopicCatalog:
    """
    Topic descriptors by id. A registered topic is immutable.
    """

    def __init__(self):
        self.topics: Dict[str, TopicDescriptor] = {}

    def register(self, topic: TopicDescriptor) -> TopicDescriptor:
        """
        Register a topic.

        Registering an identical definition again is a no-op.

        Raises:
            ValidationError: If the id is already bound to a different definition
        """
        existing = self.topics.get(topic.id)
        if existing is not None:
            if existing.same_definition(topic):
                return existing
            raise ValidationError(
                f"Topic '{topic.id}' is already registered with a different definition",
                identity=topic.id
            )
        self.topics[topic.id] = topic
        logger.info(f"Registered topic: {topic.name} ({topic.id}, {len(topic.keywords)} keywords)")
        return topic

    def get(self, topic_id: str) -> Optional[TopicDescriptor]:
        return self.topics.get(topic_id)

    def resolve(self, topic_ids: Iterable[str]) -> List[TopicDescriptor]:
        """
        Look up topics by id, keeping the given order.

        Raises:
            ValidationError: If any id is not registered
        """
        resolved = []
        missing = []
        for topic_id in topic_ids:
            topic = self.topics.get(topic_id)
            if topic is None:
                missing.append(topic_id)
            else:
                resolved.append(topic)
        if missing:
            raise ValidationError(f"Unknown topic ids: {', '.join(missing)}")
        return resolved

    def __len__(self) -> int:
        return len(self.topics)

    def __iter__(self):
        return iter(list(self.topics.values()))


class IndexPageRegistry:
    """
    Declared index documents, keyed by node identity.
    """

    def __init__(self):
        self.pages: Dict[str, IndexPageDescriptor] = {}

    def register(self, page: IndexPageDescriptor) -> IndexPageDescriptor:
        if page.node_identity in self.pages:
            logger.info(f"Replacing index page registration: {page.title} ({page.node_identity})")
        else:
            logger.info(f"Registered index page: {page.title} ({page.node_identity})")
        self.pages[page.node_identity] = page
        return page

    def get(self, node_identity: str) -> Optional[IndexPageDescriptor]:
        return self.pages.get(node_identity)

    def require(self, node_identity: str) -> IndexPageDescriptor:
        """
        Raises:
            ValidationError: If no index page is registered under node_identity
        """
        page = self.pages.get(node_identity)
        if page is None:
            raise ValidationError(
                f"Index page not registered: {node_identity}",
                operation="update-index-page",
                identity=node_identity
            )
        return page

    def __len__(self) -> int:
        return len(self.pages)

    def __iter__(self):
        return iter(list(self.pages.values()))
