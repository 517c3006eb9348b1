"""
tm — push text to the Thymer queue from the command line.

Usage:
    cat README.md | tm                  Push markdown (action: append)
    echo "Meeting notes" | tm           Push text
    tm lifelog Had coffee               Push a lifelog entry
    tm --collection "Tasks" < todo.md   Push with a collection target
    tm create --title "New Note" < x.md Create a new record

Config: THYMER_URL and THYMER_TOKEN environment variables,
        or ~/.config/tm/config with url= and token= lines.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import IO, Optional

import httpx

from client.connector import QueueClient, QueueClientError
from config.settings import ClientConfig, load_client_config
from models.schemas import QueueAction

_EPILOG = """\
actions:
  append (default)  Append to daily page
  lifelog           Add timestamped lifelog entry
  create            Create new record in collection

config:
  Set THYMER_URL and THYMER_TOKEN environment variables
  Or create ~/.config/tm/config with:
    url=https://your-queue.example.com
    token=your-secret-token
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tm",
        description="Push text to the Thymer queue",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--collection", help="Target collection")
    parser.add_argument("-t", "--title", help="Record title")
    parser.add_argument("-a", "--action", choices=[a.value for a in QueueAction],
                        default=QueueAction.APPEND.value, help="Queue action")
    parser.add_argument("words", nargs="*",
                        help="'lifelog <text...>' or 'create'; otherwise content is read from stdin")
    return parser


def resolve_request(args: argparse.Namespace, stdin: IO[str]) -> tuple[str, str]:
    """Work out (action, content) from parsed args and piped input."""
    action = args.action
    content = ""
    words = list(args.words)

    if words and words[0] == QueueAction.LIFELOG.value:
        action = QueueAction.LIFELOG.value
        content = " ".join(words[1:])
    elif words and words[0] == QueueAction.CREATE.value:
        action = QueueAction.CREATE.value

    if not content and not stdin.isatty():
        content = stdin.read()

    return action, content


async def send(config: ClientConfig, content: str, action: str,
               collection: str = None, title: str = None) -> str:
    client = QueueClient(config)
    try:
        return await client.submit(content, action=action, collection=collection, title=title)
    finally:
        await client.close()


def main(argv: Optional[list[str]] = None, stdin: IO[str] = None) -> int:
    stdin = stdin or sys.stdin
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_client_config()
    if not config.complete:
        print("Error: THYMER_URL and THYMER_TOKEN required", file=sys.stderr)
        print("Set environment variables or create ~/.config/tm/config", file=sys.stderr)
        return 1

    action, content = resolve_request(args, stdin)
    if not content:
        parser.print_help()
        return 1

    try:
        asyncio.run(send(config, content, action, args.collection, args.title))
    except (httpx.HTTPError, QueueClientError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"✓ Queued {len(content.encode())} bytes ({action})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
