import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from colorama import Fore, Style
from colorama import init as colorama_init
from tabulate import tabulate

from dwnstream import settings
from dwnstream.broker.redis_stream_broker import RedisStreamBroker

logger = logging.getLogger("dwnstream.admin")


# -------------------------
# Reusable formatting
# -------------------------
def color_for_pending(pending: int) -> str:
    if pending > 50:
        return Fore.RED + Style.BRIGHT
    if pending > 0:
        return Fore.YELLOW
    return Fore.GREEN


def _broker(project: Optional[str], redis_url: Optional[str]) -> RedisStreamBroker:
    namespace = project or settings.project_id()
    if not namespace:
        raise SystemExit("project id is not set. Use --project or DWN_PROJECT_ID")
    return RedisStreamBroker(namespace=namespace, redis_url=redis_url or settings.REDIS_URL)


# -------------------------
# Commands
# -------------------------
async def list_topics(broker: RedisStreamBroker) -> None:
    topics = await broker.list_topics()
    subscriptions = await broker.describe_subscriptions()
    rows = []
    for topic in topics:
        subs = [s for s in subscriptions if s["topic"] == topic]
        rows.append([topic, await broker.topic_length(topic), len(subs)])
    print(tabulate(rows, headers=["Topic", "Len", "Subscriptions"], tablefmt="github"))


async def list_subscriptions(broker: RedisStreamBroker) -> None:
    rows = []
    for s in await broker.describe_subscriptions():
        color = color_for_pending(s["pending"])
        rows.append(
            [
                s["subscription"],
                s["topic"],
                s["consumers"],
                f"{color}{s['pending']}{Fore.RESET}",
                s["last_delivered_id"],
            ]
        )
    print(
        tabulate(
            rows,
            headers=["Subscription", "Topic", "Consumers", "Pending", "LastDelivered"],
            tablefmt="github",
        )
    )


async def inspect_topic(broker: RedisStreamBroker, topic: str, limit: int) -> None:
    """Print the most recent envelopes published to a topic."""
    entries = await broker.recent_messages(topic, limit=limit)
    if not entries:
        print(f"No entries in {topic}")
        return
    for msg_id, data in entries:
        print(f"ID: {msg_id}")
        try:
            print(json.dumps(json.loads(data), indent=2))
        except json.JSONDecodeError:
            print(data)
        print("-" * 40)


async def delete_subscription(broker: RedisStreamBroker, name: str) -> None:
    if not await broker.subscription_exists(name):
        print(f"{Fore.YELLOW}No subscription {name}{Fore.RESET}")
        return
    await broker.delete_subscription(name)
    print(f"{Fore.GREEN}Deleted subscription {name}{Fore.RESET}")


async def prune_topic(broker: RedisStreamBroker, topic: str) -> None:
    if not await broker.topic_exists(topic):
        print(f"{Fore.YELLOW}No topic {topic}{Fore.RESET}")
        return
    await broker.delete_topic(topic)
    print(f"{Fore.GREEN}Deleted topic {topic} and its subscriptions{Fore.RESET}")


async def run(args: argparse.Namespace) -> None:
    broker = _broker(args.project, args.redis_url)
    await broker.connect()
    try:
        if args.command == "topics":
            await list_topics(broker)
        elif args.command == "subscriptions":
            await list_subscriptions(broker)
        elif args.command == "inspect":
            await inspect_topic(broker, args.topic, args.limit)
        elif args.command == "delete-subscription":
            await delete_subscription(broker, args.name)
        elif args.command == "prune-topic":
            await prune_topic(broker, args.topic)
    finally:
        await broker.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dwnstream-admin",
        description="Inspect and clean up DWN event stream topics and subscriptions.",
    )
    parser.add_argument("--project", help="project id (default: DWN_PROJECT_ID)")
    parser.add_argument("--redis-url", help="Redis URL (default: REDIS_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("topics", help="list tenant topics")
    sub.add_parser("subscriptions", help="list subscriptions with pending counts")

    inspect = sub.add_parser("inspect", help="show recent messages of a topic")
    inspect.add_argument("topic")
    inspect.add_argument("--limit", type=int, default=5)

    delete = sub.add_parser("delete-subscription", help="delete one subscription")
    delete.add_argument("name")

    prune = sub.add_parser("prune-topic", help="delete a topic and its subscriptions")
    prune.add_argument("topic")
    return parser


def main(argv: Optional[list] = None) -> int:
    colorama_init()
    logging.basicConfig(level=settings.LOG_LEVEL)
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
