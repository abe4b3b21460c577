"""
Entry point: command-line access to generation, the queue and publishing.

Usage::

    python run.py generate <idea_id>
    python run.py batch <idea_id> [<idea_id> ...]
    python run.py queue [--user USER_ID]
    python run.py publish <article_id> [--environment production]
    python run.py auto-publish [--loop]
    python run.py discover [--topic TOPIC] [--keywords KW ...] [--save]
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


def _print_progress(update) -> None:
    print(f"  [{update.percentage:3d}%] {update.message}")


def _dump(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_generate(args, db) -> int:
    from src.agents.orchestrator import GenerationService

    idea = await db.get_idea(args.idea_id)
    if not idea:
        logger.error("Content idea %s not found", args.idea_id)
        return 1

    service = GenerationService(db=db)
    article = await service.generate_article_complete(
        idea, {"content_type": args.content_type}, on_progress=_print_progress
    )
    saved = await service.save_article(article, idea["id"], args.user)
    print(f"Saved article {saved.get('id')}: {saved.get('title')}")
    print(f"Quality score: {article.get('quality_score')}")
    return 0


async def cmd_batch(args, db) -> int:
    from src.agents.orchestrator import GenerationService

    service = GenerationService(db=db)
    result = await service.process_batch(args.idea_ids, args.user, on_progress=_print_progress)
    print(f"Successful: {len(result['successful'])}, failed: {len(result['failed'])}")
    for failure in result["failed"]:
        print(f"  FAILED {failure['idea'].get('title')}: {failure['error']}")
    return 0 if not result["failed"] else 1


async def cmd_queue(args, db) -> int:
    from src.agents.orchestrator import GenerationService
    from src.agents.queue import GenerationQueue

    queue = GenerationQueue(db)
    if args.stats:
        _dump(await queue.stats(args.user))
        return 0

    summary = await queue.run(GenerationService(db=db), args.user, on_progress=_print_progress)
    print(
        f"Processed {summary['processed']}: {summary['completed']} completed, "
        f"{summary['failed']} failed"
    )
    return 0 if not summary["failed"] else 1


async def cmd_publish(args, db) -> int:
    from src.scheduling.publishing import PublishService

    service = PublishService(db=db)
    result = await service.retry_publish(
        args.article_id, status=args.status, environment=args.environment
    )
    _dump(result)
    return 0 if result["success"] else 1


async def cmd_auto_publish(args, db) -> int:
    from src.scheduling.auto_publish import AutoPublisher, AutoPublishScheduler

    publisher = AutoPublisher(db=db)
    if args.loop:
        await AutoPublishScheduler(publisher, args.interval).start()
        return 0

    _dump(await publisher.run_auto_publish_cycle())
    return 0


async def cmd_discover(args, db) -> int:
    from src.agents.idea_discovery import IdeaDiscoveryService

    service = IdeaDiscoveryService(db=db)
    if args.keywords:
        ideas = await service.ideas_from_keywords(args.keywords, limit=args.limit)
    else:
        result = await service.discover_ideas(
            sources=args.sources, custom_topic=args.topic or ""
        )
        ideas = result["ideas"]
        print(f"Rejected {len(result['rejected'])} ideas for low monetization")

    for idea in ideas:
        print(f"  [{idea.get('content_type')}] {idea['title']}")
    if args.save and ideas:
        saved = await service.save_ideas(ideas, args.user)
        print(f"Saved {len(saved)} ideas")
    return 0


COMMANDS = {
    "generate": cmd_generate,
    "batch": cmd_batch,
    "queue": cmd_queue,
    "publish": cmd_publish,
    "auto-publish": cmd_auto_publish,
    "discover": cmd_discover,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Perdia content engine")
    parser.add_argument("--user", default=None, help="User id recorded on saved rows")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate one article from an idea")
    gen.add_argument("idea_id")
    gen.add_argument("--content-type", default="guide")

    batch = sub.add_parser("batch", help="Generate approved ideas sequentially")
    batch.add_argument("idea_ids", nargs="+")

    queue = sub.add_parser("queue", help="Drain the generation queue")
    queue.add_argument("--stats", action="store_true", help="Only print queue counts")

    pub = sub.add_parser("publish", help="Publish an article through the webhook")
    pub.add_argument("article_id")
    pub.add_argument("--status", default="draft", choices=["draft", "publish"])
    pub.add_argument("--environment", default=None, choices=["staging", "production"])

    auto = sub.add_parser("auto-publish", help="Run the auto-publish cycle")
    auto.add_argument("--loop", action="store_true", help="Keep running on an interval")
    auto.add_argument("--interval", type=int, default=3600)

    disc = sub.add_parser("discover", help="Discover monetizable content ideas")
    disc.add_argument("--topic", default=None, help="Optional focus topic")
    disc.add_argument(
        "--sources", nargs="+", default=None, choices=["reddit", "news", "trends", "general"]
    )
    disc.add_argument("--keywords", nargs="+", default=None, help="Seed keywords for DataForSEO")
    disc.add_argument("--limit", type=int, default=10)
    disc.add_argument("--save", action="store_true", help="Insert ideas as pending")

    return parser


async def main(argv=None) -> int:
    from src.config import get_settings, validate_env
    from src.database import get_db
    from src.logging import get_logger, init_logger

    args = build_parser().parse_args(argv)
    validate_env(strict=True)

    db = await get_db()
    init_logger(log_dir=get_settings().log_dir, db=db)
    try:
        return await COMMANDS[args.command](args, db)
    except Exception:
        logger.exception("Command %s failed", args.command)
        return 1
    finally:
        await get_logger().flush()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
