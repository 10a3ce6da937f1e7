"""
Topic Index Manager

CLI entry point for maintaining topic index pages.
"""

import argparse
import asyncio
import json
import logging
import sys

from src.agents.aggregation import StatisticsAggregator
from src.commands import ChainFailurePolicy
from src.errors import ChainFailure, IndexerError
from src.models.topic import TopicDescriptor
from src.orchestrator import IndexOrchestrator
from src.registry.config_store import ConfigStore, create_default_config
from src.utils.storage import StorageManager
import config.settings as settings

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO"):
    """Configure logging for the entire application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(settings.LOG_FILE)
        ]
    )


def _split(value: str):
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def cmd_init(args) -> int:
    store = ConfigStore(args.config)
    if store.exists:
        print(f"Configuration already exists: {args.config}")
        return 1
    create_default_config(args.config).save()
    print(f"Created configuration: {args.config}")
    return 0


def cmd_add_collection(args) -> int:
    store = ConfigStore(args.config)
    if not store.add_collection(args.collection_id, args.name or "", not args.no_search):
        print(f"Collection already configured: {args.collection_id}")
        return 1
    store.save()
    print(f"Added collection: {args.collection_id}")
    return 0


def cmd_add_topic(args) -> int:
    store = ConfigStore(args.config)
    topic = TopicDescriptor(
        id=args.topic_id,
        name=args.name or args.topic_id,
        keywords=tuple(_split(args.keywords)),
        include_patterns=tuple(args.include or ()),
        exclude_patterns=tuple(args.exclude or ()),
        priority=args.priority
    )
    if not store.add_topic(topic):
        print(f"Topic already configured: {args.topic_id}")
        return 1
    store.save()
    print(f"Added topic: {topic.name} ({len(topic.keywords)} keywords)")
    return 0


def cmd_add_index(args) -> int:
    store = ConfigStore(args.config)
    added = store.add_index_page(
        args.node_identity,
        collection_id=args.collection,
        title=args.title,
        topic_ids=_split(args.topics),
        auto_update=not args.no_auto_update
    )
    if not added:
        print(f"Index page already configured: {args.node_identity}")
        return 1
    store.save()
    print(f"Added index page: {args.title or args.node_identity}")
    return 0


def cmd_list(args) -> int:
    store = ConfigStore(args.config)
    print("Collections:")
    for collection in store.collections.values():
        search = "" if collection.search_enabled else " (search disabled)"
        print(f"  - {collection.name or collection.id} [{collection.id}]{search}")
    print("Topics:")
    for topic in store.topics.values():
        print(f"  - {topic.name} [{topic.id}]: {', '.join(topic.keywords)}")
    print("Index pages:")
    for page in store.index_pages:
        auto = "" if page["autoUpdate"] else " (manual)"
        print(f"  - {page['title']} [{page['nodeIdentity']}] -> {', '.join(page['topicIds'])}{auto}")
    return 0


def cmd_stats(args) -> int:
    storage = StorageManager(args.data_root)
    stats = StatisticsAggregator().summarize(storage.load_all_records())
    print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def _with_orchestrator(args, action, only_index=None, chain_policy=None):
    orchestrator = IndexOrchestrator.over_stdio(data_root=args.data_root, chain_policy=chain_policy)
    try:
        await orchestrator.connect()
        await orchestrator.load_config(ConfigStore(args.config), only_index=only_index)
        return await action(orchestrator)
    finally:
        await orchestrator.close()


async def run_update(args) -> int:
    async def action(orchestrator):
        if args.index:
            results = [await orchestrator.update_index_page(args.index)]
        else:
            results = await orchestrator.update_all()
        orchestrator.save_run(summary={"pages": [r.to_dict() for r in results]})

        for r in results:
            status = "skipped" if r.skipped_page else ("ok" if r.success else f"failed: {r.error}")
            print(f"{r.title}: {r.created} created, {r.skipped} existing, {r.failed} failed ({status})")
        return 0 if all(r.success for r in results) else 1

    return await _with_orchestrator(args, action, only_index=args.index)


async def run_search(args) -> int:
    async def action(orchestrator):
        items = await orchestrator.search(args.collection_id, args.keyword)
        print(f"Found {len(items)} items for '{args.keyword}':")
        for item in items[:args.limit]:
            print(f"  - {item.title} [{item.identity}]")
        return 0

    return await _with_orchestrator(args, action)


async def run_attach(args) -> int:
    async def action(orchestrator):
        indexes = _split(args.indexes)
        created = await orchestrator.attach(args.target_identity, args.collection_id, indexes, title=args.title)
        orchestrator.save_run(summary={"attached": args.target_identity})
        print(f"Attached {args.target_identity} to {len(created)}/{len(indexes)} indexes")
        return 0 if len(created) == len(indexes) else 1

    return await _with_orchestrator(args, action)


async def run_exec(args) -> int:
    params = json.loads(args.params) if args.params else {}
    policy = ChainFailurePolicy.from_setting(args.chain_policy)

    async def action(orchestrator):
        mark = len(orchestrator.records)
        try:
            result = await orchestrator.execute(args.command, params)
        except ChainFailure as e:
            print(json.dumps([r.to_dict() for r in e.results], indent=2, default=str))
            raise
        if isinstance(result, list) and result and hasattr(result[0], "to_dict"):
            result = [r.to_dict() for r in result]
        if len(orchestrator.records) > mark:
            orchestrator.save_run(since=mark)
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
        return 0

    return await _with_orchestrator(args, action, chain_policy=policy)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Topic Index Manager - keep index pages linked to topic content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init
  python main.py add-collection 7034502641455497244 --name "Engineering"
  python main.py add-topic api --keywords "api,endpoint" --exclude "deprecated"
  python main.py add-index wikcnAbc123 --title "API Index" --topics api
  python main.py update
  python main.py update --index wikcnAbc123
  python main.py exec "run C1 C5" --chain-policy abort

Note: Set LARK_APP_ID and LARK_APP_SECRET before commands that reach the remote service.
        """
    )
    parser.add_argument(
        "--config",
        default=str(settings.CONFIG_FILE),
        help=f"Configuration file (default: {settings.CONFIG_FILE})"
    )
    parser.add_argument(
        "--data-root",
        default=str(settings.DATA_ROOT),
        help=f"Data directory for run records (default: {settings.DATA_ROOT})"
    )
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {settings.LOG_LEVEL})"
    )

    sub = parser.add_subparsers(dest="command_name", required=True)

    sub.add_parser("init", help="Create a starter configuration")

    p = sub.add_parser("add-collection", help="Add a collection to crawl")
    p.add_argument("collection_id")
    p.add_argument("--name")
    p.add_argument("--no-search", action="store_true", help="Register without crawling it")

    p = sub.add_parser("add-topic", help="Add a topic")
    p.add_argument("topic_id")
    p.add_argument("--name")
    p.add_argument("--keywords", required=True, help="Comma-separated keywords")
    p.add_argument("--include", action="append", help="Include pattern (repeatable)")
    p.add_argument("--exclude", action="append", help="Exclude pattern (repeatable)")
    p.add_argument("--priority", type=int)

    p = sub.add_parser("add-index", help="Add an index page")
    p.add_argument("node_identity")
    p.add_argument("--title")
    p.add_argument("--collection", help="Collection id (default: first configured)")
    p.add_argument("--topics", required=True, help="Comma-separated topic ids")
    p.add_argument("--no-auto-update", action="store_true")

    sub.add_parser("list", help="Show the configuration")

    p = sub.add_parser("update", help="Update index pages")
    p.add_argument("--index", help="Update only this index page")

    p = sub.add_parser("search", help="Preview a keyword search")
    p.add_argument("collection_id")
    p.add_argument("keyword")
    p.add_argument("--limit", type=int, default=10)

    sub.add_parser("stats", help="Statistics over stored run records")

    p = sub.add_parser("attach", help="Link one item from several index pages")
    p.add_argument("target_identity")
    p.add_argument("collection_id", help="Collection of the item")
    p.add_argument("--indexes", required=True, help="Comma-separated index page identities")
    p.add_argument("--title", default="")

    p = sub.add_parser("exec", help="Execute a command such as 'run all' or 'C2.GET_INFO'")
    p.add_argument("command")
    p.add_argument("--params", help="JSON object of operation parameters")
    p.add_argument(
        "--chain-policy",
        default=settings.CHAIN_FAILURE_POLICY,
        choices=[policy.value for policy in ChainFailurePolicy],
        help=f"Chain failure policy (default: {settings.CHAIN_FAILURE_POLICY})"
    )

    return parser


LOCAL_COMMANDS = {
    "init": cmd_init,
    "add-collection": cmd_add_collection,
    "add-topic": cmd_add_topic,
    "add-index": cmd_add_index,
    "list": cmd_list,
    "stats": cmd_stats,
}

REMOTE_COMMANDS = {
    "update": run_update,
    "search": run_search,
    "attach": run_attach,
    "exec": run_exec,
}


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.command_name in LOCAL_COMMANDS:
            code = LOCAL_COMMANDS[args.command_name](args)
        else:
            code = asyncio.run(REMOTE_COMMANDS[args.command_name](args))
        sys.exit(code)

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        print("\n⚠️  Interrupted")
        sys.exit(1)

    except (IndexerError, json.JSONDecodeError) as e:
        logger.error(f"{args.command_name} failed: {e}")
        print(f"\n❌ {args.command_name} failed: {e}")
        print(f"Check {settings.LOG_FILE} for details")
        sys.exit(1)


if __name__ == "__main__":
    main()
