"""
Integration tests for the orchestrator facade over an in-memory remote.
"""

import asyncio
import os
import tempfile
from unittest.mock import patch

import pytest

from src.commands import ChainFailurePolicy
from src.errors import ChainFailure, RemoteError, ValidationError
from src.models.topic import TopicDescriptor
from src.orchestrator import IndexOrchestrator, build_rate_limiter
from src.registry.config_store import ConfigStore
from src.remote.operations import CreateReferenceLink
from src.utils.rate_limit import FixedDelayRateLimiter, NoDelayRateLimiter, TokenBucketRateLimiter

API_TOPIC = TopicDescriptor(id="api", name="API", keywords=("api",), exclude_patterns=("deprecated",))


def make_orchestrator(fake_remote, **kwargs):
    return IndexOrchestrator(
        fake_remote,
        item_limiter=NoDelayRateLimiter(),
        page_limiter=NoDelayRateLimiter(),
        **kwargs
    )


async def setup(orchestrator):
    await orchestrator.register_collection("space-1")
    await orchestrator.register_index_page("index-1", "space-1", "API Index", [API_TOPIC])


def seed(fake_remote):
    fake_remote.search_results[("space-1", "api")] = [
        {"node_token": "A", "title": "API Guide"},
        {"node_token": "B", "title": "REST API"},
        {"node_token": "C", "title": "Deprecated API"},
    ]


def test_register_collection_uses_remote_name(fake_remote):
    orchestrator = make_orchestrator(fake_remote)

    collection = asyncio.run(orchestrator.register_collection("space-1"))

    assert collection.name == "Space space-1"
    assert orchestrator.collections.get("space-1") is collection


def test_register_index_page_checks_node_and_topics(fake_remote):
    fake_remote.missing_nodes.add("index-404")
    orchestrator = make_orchestrator(fake_remote)

    with pytest.raises(ValidationError, match="not found"):
        asyncio.run(orchestrator.register_index_page("index-404", "space-1", "Gone", [API_TOPIC]))
    with pytest.raises(ValidationError, match="Unknown topic ids"):
        asyncio.run(orchestrator.register_index_page("index-1", "space-1", "API", ["ghost"]))

    assert len(orchestrator.pages) == 0


def test_full_update_then_statistics(fake_remote):
    seed(fake_remote)
    orchestrator = make_orchestrator(fake_remote)

    async def scenario():
        await setup(orchestrator)
        first = await orchestrator.update_all()
        orchestrator.clear_cache()
        second = await orchestrator.update_all()
        return first, second

    first, second = asyncio.run(scenario())

    assert first[0].created == 2
    assert second[0].created == 0
    stats = orchestrator.get_statistics()
    assert stats.total_shortcuts == 2
    assert stats.shortcuts_by_topic == {"api": 2}
    assert stats.total_collections == 1
    assert stats.total_index_pages == 1


def test_duplicate_pages_after_attach(fake_remote):
    seed(fake_remote)
    orchestrator = make_orchestrator(fake_remote)

    async def scenario():
        await setup(orchestrator)
        await orchestrator.register_index_page("index-2", "space-1", "Favourites", [API_TOPIC], auto_update=False)
        await orchestrator.update_index_page("index-1")
        await orchestrator.attach("A", "space-1", ["index-2"], title="API Guide")

    asyncio.run(scenario())

    assert orchestrator.get_statistics().duplicate_pages == ["A"]


def test_search_preview_is_unfiltered(fake_remote):
    seed(fake_remote)
    orchestrator = make_orchestrator(fake_remote)

    async def scenario():
        await setup(orchestrator)
        return await orchestrator.search("space-1", "api")

    items = asyncio.run(scenario())

    assert [i.identity for i in items] == ["A", "B", "C"]


def test_load_config_registers_everything(fake_remote):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(os.path.join(tmpdir, "config.json"))
        store.add_collection("space-1", "Engineering")
        store.add_topic(API_TOPIC)
        store.add_index_page("index-1", "space-1", "API Index", ["api"])
        store.add_index_page("index-2", "space-1", "Other", ["api"])

        orchestrator = make_orchestrator(fake_remote)
        asyncio.run(orchestrator.load_config(store, only_index="index-2"))

    assert orchestrator.collections.get("space-1").name == "Engineering"
    assert [p.node_identity for p in orchestrator.pages] == ["index-2"]
    assert orchestrator.pages.get("index-2").topics == [API_TOPIC]


def test_commands_reach_operations(fake_remote):
    seed(fake_remote)
    orchestrator = make_orchestrator(fake_remote)

    async def scenario():
        await setup(orchestrator)
        crawl = await orchestrator.execute("C4")
        search = await orchestrator.execute("C4.SEARCH", {"collection_id": "space-1", "keyword": "api"})
        update = await orchestrator.execute("C5.UPDATE_INDEX", {"node_identity": "index-1"})
        stats = await orchestrator.execute("C5.STATISTICS")
        indexes = await orchestrator.execute("C2")
        members = await orchestrator.execute("C3")
        return crawl, search, update, stats, indexes, members

    crawl, search, update, stats, indexes, members = asyncio.run(scenario())

    assert crawl == {"api": ["A", "B"]}
    assert len(search) == 3
    assert update["created"] == 2
    assert stats["total_shortcuts"] == 2
    assert indexes["index-1"]["existing_shortcuts"] == 2
    assert list(members) == ["space-1"]


def test_command_missing_parameter(fake_remote):
    orchestrator = make_orchestrator(fake_remote)

    with pytest.raises(ValidationError, match="node_identity"):
        asyncio.run(orchestrator.execute("C2.GET_INFO"))


def test_abort_chain_drops_ledger_entries_of_completed_update(fake_remote):
    seed(fake_remote)
    orchestrator = make_orchestrator(fake_remote, chain_policy=ChainFailurePolicy.ABORT_AND_ROLLBACK)

    async def scenario():
        await setup(orchestrator)
        orchestrator.dispatcher.handlers["C1"]["INFO"] = failing_info
        await orchestrator.execute("run C5 C1")

    async def failing_info(params):
        raise RemoteError(99991663, "token expired", operation="C1.INFO")

    with pytest.raises(ChainFailure):
        asyncio.run(scenario())

    # Links stay remotely; only the local ledger is rolled back
    assert len(fake_remote.calls_of(CreateReferenceLink)) == 2
    assert orchestrator.records == []


def test_continue_chain_reports_each_step(fake_remote):
    seed(fake_remote)
    fake_remote.fail("list-space-members", "space-1", RemoteError(403, "forbidden"))
    orchestrator = make_orchestrator(fake_remote, chain_policy=ChainFailurePolicy.CONTINUE_ON_ERROR)

    async def scenario():
        await setup(orchestrator)
        return await orchestrator.execute("run all")

    results = asyncio.run(scenario())

    assert [(r.command, r.success) for r in results] == [
        ("C1", True), ("C2", True), ("C3", False), ("C4", True), ("C5", True)
    ]
    assert len(orchestrator.records) == 2


def test_save_run_writes_records_and_export(fake_remote, monkeypatch):
    seed(fake_remote)

    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setattr("config.settings.OUTPUT_ROOT", os.path.join(tmpdir, "output"))
        orchestrator = make_orchestrator(fake_remote, data_root=os.path.join(tmpdir, "data"))

        async def scenario():
            await setup(orchestrator)
            await orchestrator.update_all()

        asyncio.run(scenario())
        csv_path = orchestrator.save_run("run1")

        assert os.path.exists(csv_path)
        assert len(orchestrator.storage.load_run("run1")) == 2


def test_rate_limiter_follows_settings():
    with patch("config.settings.RATE_LIMITER", "token_bucket"):
        assert isinstance(build_rate_limiter(0.5), TokenBucketRateLimiter)
    with patch("config.settings.RATE_LIMITER", "fixed"):
        limiter = build_rate_limiter(2.0)
        assert isinstance(limiter, FixedDelayRateLimiter)
        assert limiter.delay_seconds == 2.0
    with patch("config.settings.RATE_LIMITER", "adaptive"):
        with pytest.raises(ValidationError):
            build_rate_limiter(1.0)


def test_over_stdio_uses_configured_server_command():
    with patch("config.settings.server_command", return_value=["lark-mcp", "mcp", "--app-id", "cli_x"]):
        orchestrator = IndexOrchestrator.over_stdio(chain_policy=ChainFailurePolicy.CONTINUE_ON_ERROR)

    assert orchestrator.invoker.transport.command == ["lark-mcp", "mcp", "--app-id", "cli_x"]
    assert orchestrator.invoker.correlator is orchestrator.invoker.transport.correlator
