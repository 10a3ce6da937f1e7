"""
Topic Matcher.

Crawls registered collections for a topic's keywords, filters hits through the
topic's include/exclude patterns and collapses repeated discoveries of the
same item.
"""

import logging
from typing import Dict, Iterable, List, Tuple

from src.errors import RemoteError
from src.models.item import DiscoveredItem
from src.models.topic import TopicDescriptor
from src.registry.index_registry import CollectionRegistry
from src.remote.operations import SearchByKeyword

logger = logging.getLogger(__name__)


class CrawlCache:
    """
    Memoizes search hits per (collection, keyword) within one run.

    Entries are never invalidated implicitly; call clear() between runs
    to force fresh results.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str], List[dict]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, collection_id: str, keyword: str):
        entry = self._entries.get((collection_id, keyword))
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    def put(self, collection_id: str, keyword: str, items: List[dict]) -> None:
        self._entries[(collection_id, keyword)] = items

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        logger.info("Crawl cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries


class Deduplicator:
    """Collapses items sharing a canonical identity; first occurrence wins."""

    def deduplicate(self, items: Iterable[DiscoveredItem]) -> List[DiscoveredItem]:
        seen = {}
        for item in items:
            if item.identity not in seen:
                seen[item.identity] = item
        return list(seen.values())


def matches_topic(item: DiscoveredItem, topic: TopicDescriptor) -> bool:
    """
    Decide whether an item belongs to a topic.

    1. Any exclude pattern matching rejects (exclude dominates include)
    2. If include patterns exist, at least one must match
    3. Otherwise the item is accepted
    """
    text = item.match_text

    for pattern in topic.exclude_patterns:
        if pattern.search(text):
            return False

    if topic.include_patterns:
        return any(pattern.search(text) for pattern in topic.include_patterns)

    return True


class TopicMatcher:
    """
    Produces the deduplicated candidate set for a topic.

    Keywords and collections are searched one at a time, which keeps cache
    population order predictable.
    """

    def __init__(
        self,
        invoker,
        collections: CollectionRegistry,
        cache: CrawlCache = None,
        deduplicator: Deduplicator = None
    ):
        """
        Initialize matcher.

        Args:
            invoker: RemoteOperationInvoker used for keyword searches
            collections: Collections to crawl (only search-enabled ones are used)
            cache: Crawl cache shared across topics of one run
            deduplicator: Identity-based deduplicator
        """
        self.invoker = invoker
        self.collections = collections
        self.cache = cache if cache is not None else CrawlCache()
        self.deduplicator = deduplicator or Deduplicator()

    async def search(self, collection_id: str, keyword: str) -> List[dict]:
        """
        Search one collection for one keyword, consulting the cache first.

        Returns:
            Raw search hits
        """
        cached = self.cache.get(collection_id, keyword)
        if cached is not None:
            return cached

        result = await self.invoker.invoke(SearchByKeyword(collection_id=collection_id, keyword=keyword))
        items = []
        if isinstance(result, dict):
            items = result.get("items") or []
        self.cache.put(collection_id, keyword, items)
        return items

    async def collect(self, topic: TopicDescriptor) -> List[DiscoveredItem]:
        """
        Collect the items matching a topic across all searchable collections.

        A remote error on one search skips that keyword; transport errors
        propagate.

        Returns:
            Deduplicated candidates, in discovery order
        """
        logger.info(f"Collecting items for topic: {topic.name}")
        accepted: List[DiscoveredItem] = []

        for collection in self.collections.searchable():
            for keyword in topic.keywords:
                try:
                    hits = await self.search(collection.id, keyword)
                except RemoteError as e:
                    logger.error(f"Search for '{keyword}' in {collection.id} failed: {e}")
                    continue

                matched = self.filter_hits(hits, topic, collection.id)
                accepted.extend(matched)
                logger.debug(
                    f"{collection.name}: {len(matched)}/{len(hits)} hits kept for keyword '{keyword}'"
                )

        unique = self.deduplicator.deduplicate(accepted)
        logger.info(f"Topic {topic.name}: {len(unique)} unique items ({len(accepted)} matches)")
        return unique

    @staticmethod
    def filter_hits(hits: Iterable[dict], topic: TopicDescriptor, collection_id: str) -> List[DiscoveredItem]:
        """Turn raw hits into items and keep those matching the topic."""
        kept = []
        for hit in hits:
            if not isinstance(hit, dict):
                continue
            item = DiscoveredItem.from_search_hit(hit, collection_id)
            if item is None:
                logger.debug(f"Skipping hit without identity: {hit.get('title')}")
                continue
            if matches_topic(item, topic):
                kept.append(item)
        return kept
