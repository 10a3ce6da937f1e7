"""
Unit tests for the shortcut reconciler.
"""

import asyncio

import pytest

from src.agents.matcher import TopicMatcher
from src.agents.reconciler import MANUAL_TOPIC_ID, ShortcutReconciler
from src.errors import RemoteError, RequestTimeout, TransportClosed, ValidationError
from src.models.index_page import IndexPageDescriptor
from src.models.topic import CollectionSource, TopicDescriptor
from src.registry.index_registry import CollectionRegistry, IndexPageRegistry
from src.remote.operations import CreateReferenceLink
from src.utils.rate_limit import NoDelayRateLimiter


class CountingLimiter(NoDelayRateLimiter):
    def __init__(self):
        self.pauses = 0

    async def pause(self):
        self.pauses += 1


API_TOPIC = TopicDescriptor(id="api", name="API", keywords=("api",), exclude_patterns=("deprecated",))
REST_TOPIC = TopicDescriptor(id="rest", name="REST", keywords=("rest",))


def build(fake_remote, *pages, item_limiter=None, page_limiter=None):
    collections = CollectionRegistry()
    collections.register(CollectionSource("space-1"))
    registry = IndexPageRegistry()
    for page in pages:
        registry.register(page)
    return ShortcutReconciler(
        fake_remote,
        registry,
        TopicMatcher(fake_remote, collections),
        item_limiter=item_limiter or NoDelayRateLimiter(),
        page_limiter=page_limiter or NoDelayRateLimiter()
    )


def page(identity="index-1", topics=(API_TOPIC,), auto_update=True):
    return IndexPageDescriptor(identity, "space-1", f"Index {identity}", list(topics), auto_update)


def seed(fake_remote, keyword, *tokens):
    fake_remote.search_results[("space-1", keyword)] = [
        {"node_token": t, "title": f"{keyword} doc {t}"} for t in tokens
    ]


def test_update_creates_a_link_per_candidate(fake_remote):
    seed(fake_remote, "api", "A", "B")
    reconciler = build(fake_remote, page())

    result = asyncio.run(reconciler.update_index_page("index-1"))

    assert result.created == 2
    assert result.success
    created = fake_remote.calls_of(CreateReferenceLink)
    assert [c.target_identity for c in created] == ["A", "B"]
    assert all(c.parent_identity == "index-1" for c in created)
    assert [r.target_identity for r in reconciler.records] == ["A", "B"]
    assert reconciler.records[0].topic_id == "api"
    assert reconciler.records[0].matched_keywords == ["api"]


def test_second_pass_is_idempotent(fake_remote):
    seed(fake_remote, "api", "A", "B")
    reconciler = build(fake_remote, page())

    async def scenario():
        await reconciler.update_index_page("index-1")
        reconciler.matcher.cache.clear()
        return await reconciler.update_index_page("index-1")

    second = asyncio.run(scenario())

    assert second.created == 0
    assert second.skipped == 2
    assert len(reconciler.records) == 2


def test_only_missing_link_is_created(fake_remote):
    """Index already links A; candidates [A, B] create exactly B."""
    fake_remote.children["index-1"] = [
        {"node_token": "sc-0", "node_type": "shortcut", "origin_node_token": "A"},
        {"node_token": "doc-x", "node_type": "origin", "origin_node_token": "B"},
    ]
    seed(fake_remote, "api", "A", "B")
    reconciler = build(fake_remote, page())

    result = asyncio.run(reconciler.update_index_page("index-1"))

    assert result.existing == 1
    assert result.created == 1
    assert [r.target_identity for r in reconciler.records] == ["B"]


def test_malformed_child_entries_are_ignored(fake_remote):
    fake_remote.children["index-1"] = [
        "not-a-node",
        None,
        {"node_token": "sc-0", "node_type": "shortcut", "origin_node_token": "A"},
    ]
    seed(fake_remote, "api", "A", "B")
    reconciler = build(fake_remote, page("index-1"), page("index-2"))

    results = asyncio.run(reconciler.update_all())

    assert [r.success for r in results] == [True, True]
    assert results[0].existing == 1
    assert results[0].created == 1
    assert results[1].created == 2


def test_same_item_under_two_topics_linked_once(fake_remote):
    seed(fake_remote, "api", "A")
    seed(fake_remote, "rest", "A", "C")
    reconciler = build(fake_remote, page(topics=(API_TOPIC, REST_TOPIC)))

    result = asyncio.run(reconciler.update_index_page("index-1"))

    assert [r.target_identity for r in reconciler.records] == ["A", "C"]
    assert [t.created for t in result.topics] == [1, 1]
    assert result.topics[1].skipped == 1


@pytest.mark.parametrize("error", [
    RemoteError(230005, "node already exists"),
    RequestTimeout("no response"),
])
def test_item_failure_does_not_abort_topic(fake_remote, error):
    seed(fake_remote, "api", "A", "B", "C")
    fake_remote.fail("create-reference-link", "B", error)
    limiter = CountingLimiter()
    reconciler = build(fake_remote, page(), item_limiter=limiter)

    result = asyncio.run(reconciler.update_index_page("index-1"))

    assert result.created == 2
    assert result.failed == 1
    assert result.topics[0].failures[0].identity == "B"
    assert [r.target_identity for r in reconciler.records] == ["A", "C"]
    # Paced after every attempt, failed ones included
    assert limiter.pauses == 3


def test_transport_loss_aborts_page_and_keeps_records(fake_remote):
    seed(fake_remote, "api", "A", "B")
    fake_remote.fail("create-reference-link", "B", TransportClosed("process exited"))
    reconciler = build(fake_remote, page())

    with pytest.raises(TransportClosed):
        asyncio.run(reconciler.update_index_page("index-1"))

    assert [r.target_identity for r in reconciler.records] == ["A"]


def test_unknown_index_page_raises_validation_error(fake_remote):
    reconciler = build(fake_remote)

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(reconciler.update_index_page("missing"))

    assert exc_info.value.identity == "missing"
    assert fake_remote.calls == []


def test_update_all_skips_manual_pages_and_continues_after_failure(fake_remote):
    seed(fake_remote, "api", "A")
    fake_remote.fail("list-children", "index-2", RemoteError(131006, "permission denied"))
    page_limiter = CountingLimiter()
    reconciler = build(
        fake_remote,
        page("index-1"),
        page("index-2"),
        page("index-3", auto_update=False),
        page("index-4"),
        page_limiter=page_limiter
    )

    results = asyncio.run(reconciler.update_all())

    assert [r.node_identity for r in results] == ["index-1", "index-2", "index-3", "index-4"]
    assert results[1].success is False
    assert "permission denied" in results[1].to_dict()["error"]
    assert results[2].skipped_page
    assert sorted(r.index_node_identity for r in reconciler.records) == ["index-1", "index-4"]
    assert page_limiter.pauses == 3


def test_manual_page_can_be_updated_directly(fake_remote):
    seed(fake_remote, "api", "A")
    reconciler = build(fake_remote, page(auto_update=False))

    result = asyncio.run(reconciler.update_index_page("index-1"))

    assert result.created == 1


def test_attach_links_every_listed_index_without_dedup(fake_remote):
    fake_remote.children["index-1"] = [
        {"node_token": "sc-0", "node_type": "shortcut", "origin_node_token": "doc-9"}
    ]
    reconciler = build(fake_remote, page("index-1"), page("index-2"))

    created = asyncio.run(reconciler.attach_to_indexes("doc-9", "space-7", ["index-1", "index-2"], title="Guide"))

    assert [r.index_node_identity for r in created] == ["index-1", "index-2"]
    assert all(r.topic_id == MANUAL_TOPIC_ID for r in created)
    assert fake_remote.calls_of(CreateReferenceLink)[0].target_collection_id == "space-7"


def test_attach_validates_all_pages_before_writing(fake_remote):
    reconciler = build(fake_remote, page("index-1"))

    with pytest.raises(ValidationError):
        asyncio.run(reconciler.attach_to_indexes("doc-9", "space-1", ["index-1", "unknown"]))

    assert fake_remote.calls_of(CreateReferenceLink) == []


def test_truncate_records_returns_dropped_tail(fake_remote):
    seed(fake_remote, "api", "A", "B")
    reconciler = build(fake_remote, page())
    asyncio.run(reconciler.update_index_page("index-1"))

    dropped = reconciler.truncate_records(1)

    assert [r.target_identity for r in dropped] == ["B"]
    assert len(reconciler.records) == 1
