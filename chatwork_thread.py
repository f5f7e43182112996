"""Chatwork Thread Tool - group Chatwork room messages into threads.

Usage:
    chatwork-thread create 1234567890 -r 368838329 --name "API Discussion"
    chatwork-thread create "https://www.chatwork.com/#!rid368838329-2015782344493105152"
    chatwork-thread create <url> --force-double          # Root may already be threaded
    chatwork-thread list --limit 10 --sort name
    chatwork-thread show 1 --format markdown -o thread.md
    chatwork-thread show 1 --format html -o thread.html
    chatwork-thread add-message 1 9876543210 --type reply
    chatwork-thread del-message 1 9876543210 --force
    chatwork-thread refresh 1                            # Pull newly related messages
    chatwork-thread delete 1 --force

Environment (or .env):
    CHATWORK_API_TOKEN    Chatwork API token (required for create/add-message/refresh)
    DB_PATH               SQLite database path (default: ./data/threads.db)
    LOG_LEVEL             Logging level (default: INFO)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from chatwork_client import ChatworkClient
from config import Config, load_config
from errors import ChatworkThreadError, ConfigError, MessageAlreadyExistsError
from models import Message, RelationshipType
from thread_assembler import ThreadAssembler
from thread_formatter import FORMATS, format_thread
from thread_store import ThreadStore

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100
_PREVIEW_COUNT = 5


def _preview(text: str, limit: int = _PREVIEW_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


def _print_messages(messages: List[Message], limit: int = _PREVIEW_COUNT) -> None:
    for index, message in enumerate(messages[:limit], 1):
        print(f"  {index}. [{message.send_time}] {message.sender_name}: {_preview(message.content)}")
    if len(messages) > limit:
        print(f"  ... and {len(messages) - limit} more messages")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chatwork-thread",
        description="Display Chatwork room content in thread format.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging.",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to a .env file with configuration. Default: .env",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a thread from a message id or Chatwork URL.")
    create.add_argument("message", help="Message id or Chatwork URL (#!rid<room>-<message>).")
    create.add_argument("-n", "--name", default=None, help="Thread name.")
    create.add_argument("-d", "--description", default=None, help="Thread description.")
    create.add_argument("-r", "--room-id", default=None, help="Room id (auto-detected from URL).")
    create.add_argument(
        "--force-double",
        action="store_true",
        help="Allow a root message that already belongs to another thread.",
    )

    list_cmd = subparsers.add_parser("list", help="List threads.")
    list_cmd.add_argument("-l", "--limit", type=int, default=20, help="Maximum threads. Default: 20")
    list_cmd.add_argument(
        "-s", "--sort",
        choices=["name", "created", "updated"],
        default="updated",
        help="Sort order. Default: updated.",
    )
    list_cmd.add_argument("--search", default=None, help="Filter by name or description.")

    show = subparsers.add_parser("show", help="Show a thread's messages.")
    show.add_argument("thread_id", type=int)
    show.add_argument("-f", "--format", choices=FORMATS, default="text", help="Default: text.")
    show.add_argument("-o", "--output", default=None, help="Write to a file instead of stdout.")
    show.add_argument("--include-metadata", action="store_true", help="Show ids and timestamps.")

    add = subparsers.add_parser("add-message", help="Add a message to an existing thread.")
    add.add_argument("thread_id", type=int)
    add.add_argument("message", help="Message id or Chatwork URL.")
    add.add_argument(
        "-t", "--type",
        choices=["reply", "quote", "manual"],
        default="manual",
        help="Relationship type. Default: manual.",
    )
    add.add_argument("-r", "--room-id", default=None, help="Room id (auto-detected if omitted).")

    delete = subparsers.add_parser("del-message", help="Remove a message from a thread.")
    delete.add_argument("thread_id", type=int)
    delete.add_argument("message_id")
    delete.add_argument("--force", action="store_true", help="Skip the confirmation step.")

    remove = subparsers.add_parser("delete", help="Delete a thread and its memberships.")
    remove.add_argument("thread_id", type=int)
    remove.add_argument("--force", action="store_true", help="Skip the confirmation step.")

    refresh = subparsers.add_parser("refresh", help="Add newly related messages to a thread.")
    refresh.add_argument("thread_id", type=int)
    refresh.add_argument("-r", "--room-id", default=None, help="Room id (auto-detected if omitted).")

    return parser.parse_args(argv)


def _setup_logging(config: Config, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )


def _assembler(config: Config, store: ThreadStore) -> ThreadAssembler:
    return ThreadAssembler(ChatworkClient(config), store)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_create(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    assembler = _assembler(config, store)
    try:
        thread = assembler.create_thread(
            args.message,
            room_id=args.room_id,
            name=args.name,
            description=args.description,
            force_double=args.force_double,
        )
    except MessageAlreadyExistsError as e:
        logger.error("%s", e)
        print("Use --force-double to create the thread anyway.", file=sys.stderr)
        return 1

    messages = store.get_thread_memberships(thread.id)
    print("\nThread created successfully!")
    print(f"Thread ID:   {thread.id}")
    print(f"Thread Name: {thread.name}")
    if thread.description:
        print(f"Description: {thread.description}")
    print(f"Messages:    {len(messages)}")
    if messages:
        print("\nMessages in thread:")
        _print_messages(messages)
    print(f"\nUse 'chatwork-thread show {thread.id}' to view the full thread.")
    return 0


def cmd_list(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    if args.limit < 1:
        logger.error("Limit must be a positive number")
        return 1

    threads = store.list_threads(limit=args.limit)
    if args.search:
        term = args.search.lower()
        threads = [
            t for t in threads
            if term in t.name.lower() or term in (t.description or "").lower()
        ]
    if args.sort == "name":
        threads.sort(key=lambda t: t.name.lower())
    elif args.sort == "created":
        threads.sort(key=lambda t: (t.created_at, t.id), reverse=True)

    if not threads:
        print("No threads found. Create one with: chatwork-thread create <message-id>")
        return 0

    print(f"Found {len(threads)} thread(s):")
    print("\u2500" * 80)
    for thread in threads:
        count = len(store.get_memberships(thread.id))
        print(f"ID: {thread.id}  |  {thread.name}")
        if thread.description:
            print(f"  Description: {_preview(thread.description, 60)}")
        print(
            f"  Created: {thread.created_at:%Y-%m-%d}  |  "
            f"Updated: {thread.updated_at:%Y-%m-%d}  |  Messages: {count}"
        )
    totals = store.stats()
    print("\u2500" * 80)
    print(f"Total: {totals['threads']} thread(s), {totals['messages']} cached message(s), "
          f"{totals['memberships']} membership(s)")
    return 0


def cmd_show(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    thread = store.get_thread(args.thread_id)
    if thread is None:
        logger.error("Thread %d not found", args.thread_id)
        return 1

    messages = store.get_thread_memberships(thread.id)
    if not messages:
        print("This thread has no messages")
        return 0

    output = format_thread(
        thread,
        messages,
        store.get_memberships(thread.id),
        fmt=args.format,
        include_metadata=args.include_metadata,
    )
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Thread content saved to: {args.output}")
    else:
        print(output)
    return 0


def cmd_add_message(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    assembler = _assembler(config, store)
    membership = assembler.add_message_to_thread(
        args.thread_id,
        args.message,
        relationship_type=RelationshipType(args.type),
        room_id=args.room_id,
    )
    message = store.get_message(membership.message_id)
    count = len(store.get_memberships(args.thread_id))
    print(f"Message {membership.message_id} added to thread {args.thread_id} "
          f"as {membership.relationship_type.value} ({count} messages now)")
    if message:
        print(f"  {message.sender_name}: {_preview(message.content)}")
    return 0


def cmd_del_message(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    thread = store.get_thread(args.thread_id)
    if thread is None:
        logger.error("Thread %d not found", args.thread_id)
        return 1

    message = store.get_message(args.message_id)
    if message:
        print("Message to remove:")
        print(f"  {message.sender_name}: {_preview(message.content, 50)}")

    if not args.force:
        print(f"Removing a message from thread \"{thread.name}\" cannot be undone.")
        print("Confirmation required. Re-run with --force to proceed.", file=sys.stderr)
        return 1

    ThreadAssembler(source=None, store=store).remove_message_from_thread(
        args.thread_id, args.message_id,
    )
    count = len(store.get_memberships(args.thread_id))
    print(f"Message removed. Thread \"{thread.name}\" now has {count} messages.")
    return 0


def cmd_delete(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    thread = store.get_thread(args.thread_id)
    if thread is None:
        logger.error("Thread %d not found", args.thread_id)
        return 1

    count = len(store.get_memberships(thread.id))
    if not args.force:
        print(f"Deleting thread \"{thread.name}\" ({count} messages) cannot be undone.")
        print("Confirmation required. Re-run with --force to proceed.", file=sys.stderr)
        return 1

    store.delete_thread(thread.id)
    logger.info("Thread %d deleted", thread.id)
    print(f"Thread \"{thread.name}\" deleted. Cached messages are kept.")
    return 0


def cmd_refresh(args: argparse.Namespace, config: Config, store: ThreadStore) -> int:
    assembler = _assembler(config, store)
    before = len(store.get_memberships(args.thread_id))
    added = assembler.refresh_thread(args.thread_id, room_id=args.room_id)

    print(f"Thread refresh completed: {len(added)} new related message(s) "
          f"({before} -> {before + len(added)})")
    if added:
        _print_messages(added)
    return 0


_COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "show": cmd_show,
    "add-message": cmd_add_message,
    "del-message": cmd_del_message,
    "refresh": cmd_refresh,
    "delete": cmd_delete,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(env_path=Path(args.env_file))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        _setup_logging(config, args.verbose)
    except OSError as e:
        print(f"Cannot open log file {config.log_file}: {e}", file=sys.stderr)
        return 1

    try:
        store = ThreadStore.from_path(config.database_path)
    except (OSError, SQLAlchemyError) as e:
        logger.error("Cannot open database %s: %s", config.database_path, e)
        return 1

    try:
        return _COMMANDS[args.command](args, config, store)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        print("Copy env.example to .env and set CHATWORK_API_TOKEN.", file=sys.stderr)
        return 1
    except (ChatworkThreadError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
