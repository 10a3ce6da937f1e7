"""
Unit tests for topic matching, crawl caching and deduplication.
"""

import asyncio

import pytest

from src.agents.matcher import CrawlCache, Deduplicator, TopicMatcher, matches_topic
from src.errors import RemoteError, TransportClosed, ValidationError
from src.models.item import DiscoveredItem
from src.models.topic import CollectionSource, TopicDescriptor
from src.registry.index_registry import CollectionRegistry
from src.remote.operations import SearchByKeyword


def hit(token, title, content="", space_id=None, key="node_token"):
    data = {key: token, "title": title, "content": content}
    if space_id:
        data["space_id"] = space_id
    return data


def make_matcher(fake_remote, *collections):
    registry = CollectionRegistry()
    for collection in collections or (CollectionSource("space-1"),):
        registry.register(collection)
    return TopicMatcher(fake_remote, registry)


def item(title, content=""):
    return DiscoveredItem(identity="x", title=title, source_collection_id="s", content=content)


def test_exclude_pattern_dominates():
    topic = TopicDescriptor(
        id="api",
        name="API",
        keywords=("api",),
        include_patterns=("api",),
        exclude_patterns=("deprecated",)
    )

    assert matches_topic(item("API Guide"), topic)
    assert not matches_topic(item("Deprecated API"), topic)


def test_include_patterns_require_a_match():
    topic = TopicDescriptor(id="v2", name="V2", keywords=("api",), include_patterns=(r"v2\b", "beta"))

    assert matches_topic(item("API v2 reference"), topic)
    assert matches_topic(item("API", content="Beta notes"), topic)
    assert not matches_topic(item("API v1 reference"), topic)


def test_no_patterns_accepts_every_hit():
    topic = TopicDescriptor(id="all", name="All", keywords=("doc",))

    assert matches_topic(item("Anything at all"), topic)


def test_invalid_pattern_rejected():
    with pytest.raises(ValidationError):
        TopicDescriptor(id="bad", name="Bad", keywords=("x",), include_patterns=("(unclosed",))


def test_include_then_exclude_on_same_text(fake_remote):
    fake_remote.search_results[("space-1", "foo")] = [hit("A", "foo doc"), hit("B", "foobar")]
    plain = TopicDescriptor(id="foo", name="Foo", keywords=("foo",))
    include_bar = TopicDescriptor(id="bar", name="Bar", keywords=("foo",), include_patterns=("bar",))
    exclude_bar = TopicDescriptor(
        id="nobar", name="No bar", keywords=("foo",), include_patterns=("bar",), exclude_patterns=("BAR",)
    )
    matcher = make_matcher(fake_remote)

    async def scenario():
        return [[i.identity for i in await matcher.collect(t)] for t in (plain, include_bar, exclude_bar)]

    assert asyncio.run(scenario()) == [["A", "B"], ["B"], []]


def test_collect_filters_hits(fake_remote):
    """Only hits that pass the topic's rules become candidates."""
    fake_remote.search_results[("space-1", "api")] = [
        hit("n1", "API Guide"),
        hit("n2", "Deprecated API"),
    ]
    topic = TopicDescriptor(id="api", name="API", keywords=("api",), exclude_patterns=("deprecated",))

    candidates = asyncio.run(make_matcher(fake_remote).collect(topic))

    assert [c.identity for c in candidates] == ["n1"]
    assert candidates[0].source_collection_id == "space-1"


def test_collect_deduplicates_across_keywords_and_collections(fake_remote):
    fake_remote.search_results[("space-1", "api")] = [hit("n1", "API Guide"), hit("n2", "REST API")]
    fake_remote.search_results[("space-1", "rest")] = [hit("n2", "REST API (again)")]
    fake_remote.search_results[("space-2", "api")] = [hit("n1", "API Guide mirror", space_id="space-1")]
    topic = TopicDescriptor(id="api", name="API", keywords=("api", "rest"))

    matcher = make_matcher(fake_remote, CollectionSource("space-1"), CollectionSource("space-2"))
    candidates = asyncio.run(matcher.collect(topic))

    assert [c.identity for c in candidates] == ["n1", "n2"]
    # First occurrence wins
    assert candidates[1].title == "REST API"


def test_identity_falls_back_to_object_token(fake_remote):
    fake_remote.search_results[("space-1", "doc")] = [
        hit("obj-7", "Spreadsheet", key="obj_token"),
        {"title": "No token at all"},
    ]
    topic = TopicDescriptor(id="docs", name="Docs", keywords=("doc",))

    candidates = asyncio.run(make_matcher(fake_remote).collect(topic))

    assert [c.identity for c in candidates] == ["obj-7"]


def test_search_disabled_collections_are_not_crawled(fake_remote):
    topic = TopicDescriptor(id="docs", name="Docs", keywords=("doc",))
    matcher = make_matcher(
        fake_remote,
        CollectionSource("space-1"),
        CollectionSource("archive", search_enabled=False)
    )

    asyncio.run(matcher.collect(topic))

    searched = {c.collection_id for c in fake_remote.calls_of(SearchByKeyword)}
    assert searched == {"space-1"}


def test_cache_serves_repeated_searches_until_cleared(fake_remote):
    fake_remote.search_results[("space-1", "api")] = [hit("n1", "API Guide")]
    topic = TopicDescriptor(id="api", name="API", keywords=("api",))
    matcher = make_matcher(fake_remote)

    async def scenario():
        await matcher.collect(topic)
        await matcher.collect(topic)
        searches_before_clear = len(fake_remote.calls_of(SearchByKeyword))
        matcher.cache.clear()
        await matcher.collect(topic)
        return searches_before_clear

    assert asyncio.run(scenario()) == 1
    assert len(fake_remote.calls_of(SearchByKeyword)) == 2
    assert ("space-1", "api") in matcher.cache


def test_remote_error_skips_only_that_keyword(fake_remote):
    fake_remote.search_results[("space-1", "rest")] = [hit("n2", "REST API")]
    fake_remote.fail("search-by-keyword", "space-1", RemoteError(99991400, "rate limited"))
    topic = TopicDescriptor(id="api", name="API", keywords=("api",))

    assert asyncio.run(make_matcher(fake_remote).collect(topic)) == []

    # Errors aren't cached: the next search reaches the remote again
    del fake_remote.failures[("search-by-keyword", "space-1")]
    topic = TopicDescriptor(id="rest", name="REST", keywords=("api", "rest"))
    matcher = make_matcher(fake_remote)
    assert [c.identity for c in asyncio.run(matcher.collect(topic))] == ["n2"]


def test_transport_failure_propagates(fake_remote):
    fake_remote.fail("search-by-keyword", "space-1", TransportClosed("gone"))
    topic = TopicDescriptor(id="api", name="API", keywords=("api",))

    with pytest.raises(TransportClosed):
        asyncio.run(make_matcher(fake_remote).collect(topic))


def test_cache_counts_hits_and_misses():
    cache = CrawlCache()

    assert cache.get("s", "k") is None
    cache.put("s", "k", [{"node_token": "n"}])
    assert cache.get("s", "k") == [{"node_token": "n"}]
    assert (cache.hits, cache.misses) == (1, 1)

    cache.clear()
    assert len(cache) == 0


def test_deduplicator_keeps_first_occurrence():
    first = DiscoveredItem("a", "First", "s")
    later = DiscoveredItem("a", "Later", "s")
    other = DiscoveredItem("b", "Other", "s")

    assert Deduplicator().deduplicate([first, other, later]) == [first, other]
