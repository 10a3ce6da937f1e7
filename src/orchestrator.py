"""
Index Orchestrator.

Owns the registries, crawl cache, reconciler and record ledger for one
session, and exposes the core operations plus textual command execution.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from src.agents.aggregation import ShortcutStatistics, StatisticsAggregator
from src.agents.hierarchy import HierarchyWalker
from src.agents.matcher import CrawlCache, TopicMatcher
from src.agents.reconciler import MANUAL_TOPIC_ID, PageUpdateResult, ShortcutReconciler
from src.commands import ChainFailurePolicy, CommandDispatcher, CommandOutcome
from src.errors import ValidationError
from src.models.index_page import IndexPageDescriptor
from src.models.item import DiscoveredItem, ShortcutRecord
from src.models.topic import CollectionSource, TopicDescriptor
from src.registry.config_store import ConfigStore
from src.registry.index_registry import CollectionRegistry, IndexPageRegistry, TopicCatalog
from src.remote.invoker import RemoteOperationInvoker
from src.remote.operations import GetCollectionInfo, GetItemInfo, ListChildren, ListSpaceMembers
from src.remote.transport import StdioTransport
from src.utils.rate_limit import FixedDelayRateLimiter, RateLimiter, TokenBucketRateLimiter
from src.utils.storage import StorageManager
import config.settings as settings

logger = logging.getLogger(__name__)

DEFAULT_OPERATIONS = {
    "C1": "INFO",
    "C2": "LIST_INDEXES",
    "C3": "LIST_MEMBERS",
    "C4": "CRAWL",
    "C5": "UPDATE_ALL",
}


def build_rate_limiter(delay_seconds: float) -> RateLimiter:
    """Rate limiter selected by settings.RATE_LIMITER."""
    if settings.RATE_LIMITER == "token_bucket":
        return TokenBucketRateLimiter(settings.TOKEN_BUCKET_RATE, settings.TOKEN_BUCKET_CAPACITY)
    if settings.RATE_LIMITER == "fixed":
        return FixedDelayRateLimiter(delay_seconds)
    raise ValidationError(f"Unknown rate limiter: {settings.RATE_LIMITER!r}")


def _require_param(params: dict, key: str, operation: str):
    value = params.get(key)
    if value in (None, "", []):
        raise ValidationError(f"Missing parameter '{key}'", operation=operation)
    return value


class IndexOrchestrator:
    """
    Facade over the topic index components.

    Coordinates:
    register collections/topics/index pages → crawl per topic
    → reconcile each index page → statistics and export
    """

    def __init__(
        self,
        invoker: RemoteOperationInvoker,
        data_root: Optional[str] = None,
        item_limiter: Optional[RateLimiter] = None,
        page_limiter: Optional[RateLimiter] = None,
        chain_policy: Optional[ChainFailurePolicy] = None
    ):
        """
        Initialize orchestrator.

        Args:
            invoker: Connected RemoteOperationInvoker
            data_root: Root directory for run records (None: runs aren't stored)
            item_limiter: Pacing after each link creation (default from settings)
            page_limiter: Pacing between index pages (default from settings)
            chain_policy: Chain failure policy (default from settings)
        """
        self.invoker = invoker
        self.collections = CollectionRegistry()
        self.topics = TopicCatalog()
        self.pages = IndexPageRegistry()
        self.cache = CrawlCache()

        self.matcher = TopicMatcher(invoker, self.collections, cache=self.cache)
        self.reconciler = ShortcutReconciler(
            invoker,
            self.pages,
            self.matcher,
            item_limiter=item_limiter or build_rate_limiter(settings.ITEM_DELAY_SECONDS),
            page_limiter=page_limiter or build_rate_limiter(settings.PAGE_DELAY_SECONDS),
            list_page_size=settings.LIST_PAGE_SIZE,
            max_list_pages=settings.MAX_LIST_PAGES
        )
        self.walker = HierarchyWalker(
            invoker,
            max_depth=settings.MAX_TREE_DEPTH,
            max_nodes=settings.MAX_TREE_NODES
        )
        self.aggregator = StatisticsAggregator()
        self.storage = StorageManager(data_root) if data_root else None

        self.dispatcher = CommandDispatcher(
            self._command_handlers(),
            DEFAULT_OPERATIONS,
            chain_policy or ChainFailurePolicy.from_setting(settings.CHAIN_FAILURE_POLICY)
        )

    @classmethod
    def over_stdio(cls, command: Optional[List[str]] = None, **kwargs) -> "IndexOrchestrator":
        """Orchestrator whose invoker talks to a spawned remote service process."""
        transport = StdioTransport(command or settings.server_command())
        invoker = RemoteOperationInvoker.over(transport, settings.REQUEST_TIMEOUT_SECONDS)
        return cls(invoker, **kwargs)

    @property
    def records(self) -> List[ShortcutRecord]:
        return self.reconciler.records

    async def connect(self) -> List[str]:
        return await self.invoker.connect()

    async def close(self) -> None:
        await self.invoker.close()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_collection(
        self,
        collection_id: str,
        name: str = "",
        search_enabled: bool = True
    ) -> CollectionSource:
        """
        Register a collection after confirming it exists remotely.

        The remote name is used when none is given.
        """
        info = await self.invoker.invoke(GetCollectionInfo(collection_id))
        if not name and isinstance(info, dict):
            space = info.get("space") if isinstance(info.get("space"), dict) else info
            name = space.get("name") or ""

        collection = self.collections.register(
            CollectionSource(collection_id, name or collection_id, search_enabled)
        )
        return collection

    def register_topic(self, topic: TopicDescriptor) -> TopicDescriptor:
        return self.topics.register(topic)

    async def register_index_page(
        self,
        node_identity: str,
        collection_id: str,
        title: str,
        topics: List,
        auto_update: bool = True
    ) -> IndexPageDescriptor:
        """
        Register an index document.

        Args:
            node_identity: Node token of the index document
            collection_id: Collection the index lives in
            title: Display title
            topics: TopicDescriptors, or ids of topics already in the catalog
            auto_update: Include this page in full update runs

        Raises:
            ValidationError: Unknown topic id, or the node doesn't exist remotely
        """
        descriptors = []
        for topic in topics:
            if isinstance(topic, TopicDescriptor):
                descriptors.append(self.topics.register(topic))
            else:
                descriptors.extend(self.topics.resolve([topic]))

        info = await self.invoker.invoke(GetItemInfo(node_identity))
        if not info:
            raise ValidationError(
                f"Index page not found: {node_identity}",
                operation=GetItemInfo.name,
                identity=node_identity
            )

        page = self.pages.register(IndexPageDescriptor(
            node_identity=node_identity,
            collection_id=collection_id,
            title=title,
            topics=descriptors,
            auto_update=auto_update
        ))
        logger.debug(f"Index page {node_identity} reflects topics: {page.topic_ids}")
        return page

    async def load_config(self, store: ConfigStore, only_index: Optional[str] = None) -> None:
        """
        Register everything declared in a configuration store.

        Args:
            store: Loaded configuration
            only_index: Register just this index page (other pages are skipped)
        """
        for topic in store.topics.values():
            self.register_topic(topic)

        for collection in store.collections.values():
            await self.register_collection(collection.id, collection.name, collection.search_enabled)

        for entry in store.index_pages:
            if only_index and entry["nodeIdentity"] != only_index:
                continue
            await self.register_index_page(
                entry["nodeIdentity"],
                entry["collectionId"],
                entry["title"],
                entry["topicIds"],
                auto_update=entry["autoUpdate"]
            )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def update_index_page(self, node_identity: str) -> PageUpdateResult:
        return await self.reconciler.update_index_page(node_identity)

    async def update_all(self) -> List[PageUpdateResult]:
        return await self.reconciler.update_all()

    async def attach(
        self,
        target_identity: str,
        target_collection_id: str,
        index_identities: List[str],
        title: str = ""
    ) -> List[ShortcutRecord]:
        return await self.reconciler.attach_to_indexes(
            target_identity, target_collection_id, index_identities, title=title, topic_id=MANUAL_TOPIC_ID
        )

    async def search(self, collection_id: str, keyword: str) -> List[DiscoveredItem]:
        """Keyword search preview: items as the crawl would see them, unfiltered."""
        self.collections.require(collection_id)
        hits = await self.matcher.search(collection_id, keyword)
        items = []
        for hit in hits:
            item = DiscoveredItem.from_search_hit(hit, collection_id)
            if item is not None:
                items.append(item)
        return self.matcher.deduplicator.deduplicate(items)

    def get_statistics(self) -> ShortcutStatistics:
        return self.aggregator.summarize(
            self.records,
            total_collections=len(self.collections),
            total_index_pages=len(self.pages)
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    async def execute(self, command: str, params: Optional[dict] = None):
        """Execute a textual command (see src.commands)."""
        return await self.dispatcher.execute(command, params)

    def save_run(self, label: Optional[str] = None, since: int = 0, summary: Optional[Dict] = None) -> Optional[str]:
        """
        Store and export the records created since ledger position `since`.

        Returns:
            Path to the exported CSV, or None without a data root
        """
        if self.storage is None:
            return None
        label = label or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        records = self.records[since:]
        self.storage.save_run(label, records, summary)
        return self.aggregator.export_records(records, str(settings.OUTPUT_ROOT), label)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _command_handlers(self) -> Dict[str, Dict]:
        return {
            "C1": {
                "INFO": self._collection_info,
                "LIST": self._list_collections,
                "TREE": self._collection_tree,
            },
            "C2": {
                "LIST_INDEXES": self._list_indexes,
                "LIST_CHILDREN": self._list_children,
                "GET_INFO": self._get_info,
            },
            "C3": {
                "LIST_MEMBERS": self._list_members,
            },
            "C4": {
                "CRAWL": self._crawl,
                "SEARCH": self._search,
            },
            "C5": {
                "UPDATE_ALL": self._update_all,
                "UPDATE_INDEX": self._update_index,
                "ATTACH": self._attach,
                "STATISTICS": self._statistics,
                "CLEAR_CACHE": self._clear_cache,
            },
        }

    def _ledger_undo(self, mark: int, label: str):
        def undo():
            dropped = self.reconciler.truncate_records(mark)
            logger.warning(
                f"Dropped {len(dropped)} records of {label} from the ledger; remote links remain"
            )
        return undo

    async def _collection_info(self, params: dict) -> Dict:
        return {
            c.id: await self.invoker.invoke(GetCollectionInfo(c.id))
            for c in self.collections
        }

    async def _list_collections(self, params: dict) -> List[dict]:
        return [c.to_dict() for c in self.collections]

    async def _collection_tree(self, params: dict) -> Dict:
        collection_id = _require_param(params, "collection_id", "C1.TREE")
        root = _require_param(params, "root_identity", "C1.TREE")
        return await self.walker.walk(collection_id, root, params.get("root_title", ""))

    async def _list_indexes(self, params: dict) -> Dict:
        listing = {}
        for page in self.pages:
            existing = await self.reconciler.load_existing(page)
            listing[page.node_identity] = {
                "title": page.title,
                "topics": page.topic_ids,
                "auto_update": page.auto_update,
                "existing_shortcuts": len(existing)
            }
        return listing

    async def _list_children(self, params: dict):
        return await self.invoker.invoke(ListChildren(
            collection_id=_require_param(params, "collection_id", "C2.LIST_CHILDREN"),
            parent_identity=_require_param(params, "parent_identity", "C2.LIST_CHILDREN"),
            page_size=params.get("page_size", 50),
            page_token=params.get("page_token")
        ))

    async def _get_info(self, params: dict):
        return await self.invoker.invoke(GetItemInfo(
            _require_param(params, "node_identity", "C2.GET_INFO"),
            obj_type=params.get("obj_type")
        ))

    async def _list_members(self, params: dict) -> Dict:
        if params.get("collection_id"):
            ids = [params["collection_id"]]
        else:
            ids = [c.id for c in self.collections]
        return {
            collection_id: await self.invoker.invoke(ListSpaceMembers(collection_id))
            for collection_id in ids
        }

    async def _crawl(self, params: dict) -> Dict[str, List[str]]:
        return {
            topic.id: [item.identity for item in await self.matcher.collect(topic)]
            for topic in self.topics
        }

    async def _search(self, params: dict) -> List[dict]:
        items = await self.search(
            _require_param(params, "collection_id", "C4.SEARCH"),
            _require_param(params, "keyword", "C4.SEARCH")
        )
        return [{"identity": i.identity, "title": i.title} for i in items]

    async def _update_all(self, params: dict) -> CommandOutcome:
        mark = len(self.records)
        results = await self.update_all()
        return CommandOutcome(
            result=[r.to_dict() for r in results],
            undo=self._ledger_undo(mark, "C5.UPDATE_ALL")
        )

    async def _update_index(self, params: dict) -> CommandOutcome:
        mark = len(self.records)
        result = await self.update_index_page(_require_param(params, "node_identity", "C5.UPDATE_INDEX"))
        return CommandOutcome(result=result.to_dict(), undo=self._ledger_undo(mark, "C5.UPDATE_INDEX"))

    async def _attach(self, params: dict) -> CommandOutcome:
        mark = len(self.records)
        created = await self.attach(
            _require_param(params, "target_identity", "C5.ATTACH"),
            _require_param(params, "target_collection_id", "C5.ATTACH"),
            _require_param(params, "index_identities", "C5.ATTACH"),
            title=params.get("title", "")
        )
        return CommandOutcome(
            result=[r.to_dict() for r in created],
            undo=self._ledger_undo(mark, "C5.ATTACH")
        )

    async def _statistics(self, params: dict) -> dict:
        return self.get_statistics().to_dict()

    async def _clear_cache(self, params: dict) -> None:
        self.clear_cache()
