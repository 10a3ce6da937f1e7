"""
Shortcut Reconciler.

Brings index documents in line with the current crawl: lists the reference
links an index already holds, collects each topic's candidates and creates
only the links that are missing. Reruns against unchanged content create
nothing.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from src.agents.matcher import TopicMatcher
from src.errors import IndexerError, ItemFailure, RemoteError, RequestTimeout
from src.models.index_page import IndexPageDescriptor
from src.models.item import DiscoveredItem, ShortcutRecord
from src.models.topic import TopicDescriptor
from src.registry.index_registry import IndexPageRegistry
from src.remote.operations import REFERENCE_NODE_TYPE, CreateReferenceLink, ListChildren
from src.utils.rate_limit import FixedDelayRateLimiter, RateLimiter

logger = logging.getLogger(__name__)

MANUAL_TOPIC_ID = "manual"


@dataclass
class TopicUpdateResult:
    topic_id: str
    candidates: int = 0
    created: int = 0
    skipped: int = 0
    failures: List[ItemFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass
class PageUpdateResult:
    """Outcome of one index page update."""
    node_identity: str
    title: str
    existing: int = 0
    topics: List[TopicUpdateResult] = field(default_factory=list)
    error: Optional[IndexerError] = None  # Set when the page update aborted
    skipped_page: bool = False  # auto_update disabled during a bulk run

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def created(self) -> int:
        return sum(t.created for t in self.topics)

    @property
    def skipped(self) -> int:
        return sum(t.skipped for t in self.topics)

    @property
    def failed(self) -> int:
        return sum(t.failed for t in self.topics)

    def to_dict(self) -> dict:
        return {
            "node_identity": self.node_identity,
            "title": self.title,
            "success": self.success,
            "skipped_page": self.skipped_page,
            "existing": self.existing,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "error": str(self.error) if self.error else None
        }


class ShortcutReconciler:
    """
    Computes existing vs. desired reference links per index document and
    applies the difference.

    Owns the accumulated ShortcutRecord list for its lifetime.
    """

    def __init__(
        self,
        invoker,
        pages: IndexPageRegistry,
        matcher: TopicMatcher,
        item_limiter: RateLimiter = None,
        page_limiter: RateLimiter = None,
        list_page_size: int = 500,
        max_list_pages: int = 20
    ):
        """
        Initialize reconciler.

        Args:
            invoker: RemoteOperationInvoker for listing and creating links
            pages: Registry of index pages
            matcher: Topic matcher producing candidates
            item_limiter: Paces link creation (default: 0.5s fixed delay)
            page_limiter: Paces successive pages in a full run (default: 2s fixed delay)
            list_page_size: Page size when listing an index's children
            max_list_pages: Upper bound on child-listing pages followed
        """
        self.invoker = invoker
        self.pages = pages
        self.matcher = matcher
        self.item_limiter = item_limiter or FixedDelayRateLimiter(0.5)
        self.page_limiter = page_limiter or FixedDelayRateLimiter(2.0)
        self.list_page_size = list_page_size
        self.max_list_pages = max_list_pages
        self.records: List[ShortcutRecord] = []

    async def load_existing(self, page: IndexPageDescriptor) -> Set[str]:
        """
        List the reference links already under an index document.

        Returns:
            Identities the index already links to
        """
        existing = set()
        page_token = None

        for _ in range(self.max_list_pages):
            result = await self.invoker.invoke(ListChildren(
                collection_id=page.collection_id,
                parent_identity=page.node_identity,
                page_size=self.list_page_size,
                page_token=page_token
            ))
            result = result if isinstance(result, dict) else {}

            for child in result.get("items") or []:
                if not isinstance(child, dict) or child.get("node_type") != REFERENCE_NODE_TYPE:
                    continue
                target = child.get("origin_node_token")
                if target:
                    existing.add(target)

            page_token = result.get("page_token")
            if not result.get("has_more") or not page_token:
                break
        else:
            logger.warning(
                f"Stopped listing children of {page.node_identity} after {self.max_list_pages} pages"
            )

        return existing

    async def update_index_page(self, node_identity: str) -> PageUpdateResult:
        """
        Update one index page, regardless of its auto_update flag.

        Raises:
            ValidationError: If the page isn't registered
            TransportError / RemoteError: If the existing links can't be listed
        """
        page = self.pages.require(node_identity)
        logger.info(f"Updating index page: {page.title} ({page.node_identity})")

        existing = await self.load_existing(page)
        result = PageUpdateResult(page.node_identity, page.title, existing=len(existing))

        for topic in page.topics:
            topic_result = await self._reconcile_topic(page, topic, existing)
            result.topics.append(topic_result)
            logger.info(
                f"Topic {topic.name}: created {topic_result.created}, "
                f"skipped {topic_result.skipped} existing, failed {topic_result.failed}"
            )

        logger.info(
            f"Index page update completed: {page.title} "
            f"({result.created} created, {result.skipped} skipped, {result.failed} failed)"
        )
        return result

    async def _reconcile_topic(
        self,
        page: IndexPageDescriptor,
        topic: TopicDescriptor,
        existing: Set[str]
    ) -> TopicUpdateResult:
        topic_result = TopicUpdateResult(topic.id)
        candidates = await self.matcher.collect(topic)
        topic_result.candidates = len(candidates)

        for item in candidates:
            if item.identity in existing:
                topic_result.skipped += 1
                continue

            try:
                await self._create_link(page, item, topic.id, list(topic.keywords))
            except ItemFailure as e:
                logger.error(f"Failed to create shortcut for '{item.title}': {e}")
                topic_result.failures.append(e)
            else:
                # Another topic of this page may match the same item
                existing.add(item.identity)
                topic_result.created += 1
            await self.item_limiter.pause()

        return topic_result

    async def _create_link(
        self,
        page: IndexPageDescriptor,
        item: DiscoveredItem,
        topic_id: str,
        keywords: List[str]
    ) -> ShortcutRecord:
        """
        Create one reference link and record it.

        Raises:
            ItemFailure: The remote service rejected or timed out on this item
        """
        target_collection = item.source_collection_id or page.collection_id
        operation = CreateReferenceLink(
            collection_id=page.collection_id,
            parent_identity=page.node_identity,
            target_identity=item.identity,
            target_collection_id=target_collection
        )

        try:
            await self.invoker.invoke(operation)
        except (RemoteError, RequestTimeout) as e:
            raise ItemFailure(
                f"Link to '{item.title or item.identity}' under {page.node_identity} failed: {e.message}",
                operation=operation.name,
                identity=item.identity,
                details={"index": page.node_identity, "cause": e.to_dict()}
            ) from e

        record = ShortcutRecord(
            target_identity=item.identity,
            target_title=item.title,
            target_collection_id=target_collection,
            index_node_identity=page.node_identity,
            topic_id=topic_id,
            matched_keywords=keywords
        )
        self.records.append(record)
        logger.debug(f"Shortcut created: {item.identity} -> {page.node_identity}")
        return record

    async def update_all(self) -> List[PageUpdateResult]:
        """
        Update every registered index page with auto_update enabled.

        A failing page is logged and the run continues with the next one.
        """
        logger.info(f"Starting update of {len(self.pages)} index pages")
        results = []

        for page in self.pages:
            if not page.auto_update:
                logger.info(f"Skipping {page.title} (auto-update disabled)")
                results.append(PageUpdateResult(page.node_identity, page.title, skipped_page=True))
                continue

            try:
                results.append(await self.update_index_page(page.node_identity))
            except IndexerError as e:
                logger.error(f"Failed to update index {page.title}: {e}")
                results.append(PageUpdateResult(page.node_identity, page.title, error=e))
            await self.page_limiter.pause()

        logger.info(
            f"All index pages processed: {sum(r.created for r in results)} shortcuts created, "
            f"{sum(1 for r in results if not r.success)} pages failed"
        )
        return results

    async def attach_to_indexes(
        self,
        target_identity: str,
        target_collection_id: str,
        index_identities: List[str],
        title: str = "",
        topic_id: str = MANUAL_TOPIC_ID
    ) -> List[ShortcutRecord]:
        """
        Add one known item to several index documents.

        Unlike update_index_page, existing links are not consulted: a link is
        created on every listed index.

        Raises:
            ValidationError: If any index page isn't registered (before any write)
        """
        pages = [self.pages.require(identity) for identity in index_identities]
        item = DiscoveredItem(
            identity=target_identity,
            title=title,
            source_collection_id=target_collection_id
        )
        logger.info(f"Adding {target_identity} to {len(pages)} indexes")

        created = []
        for page in pages:
            try:
                created.append(await self._create_link(page, item, topic_id, []))
            except ItemFailure as e:
                logger.error(f"Failed to add to index {page.node_identity}: {e}")
            await self.item_limiter.pause()
        return created

    def truncate_records(self, length: int) -> List[ShortcutRecord]:
        """
        Drop records appended after the ledger had `length` entries.

        Returns:
            The dropped records
        """
        dropped = self.records[length:]
        del self.records[length:]
        return dropped
