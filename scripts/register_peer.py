#!/usr/bin/env python3
"""Issue a connection token for a game server outside the running hub.

Same behaviour as the console ``register`` command:

    python scripts/register_peer.py --table RelayHubTable 123456789012345678

The peer id is the Discord guild id the game server relays into. The token is
printed once; the game server sends it in its ``options`` frame.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import boto3

from relay_hub.errors import DuplicateError, StoreError
from relay_hub.storage import AccountStore

log = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("peer_id", help="Discord guild id of the game server")
    parser.add_argument("--table", required=True, help="DynamoDB table name")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    return parser.parse_args(argv)


async def register(store: AccountStore, peer_id: str) -> int:
    try:
        identity = await store.register_peer_identity(peer_id)
    except DuplicateError:
        log.error("Server %s is already registered", peer_id)
        return 1
    except StoreError as exc:
        log.error("Registration failed: %s", exc)
        return 2
    print(f"The token for server '{peer_id}' is '{identity.token}'")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    table = boto3.resource("dynamodb", region_name=args.region).Table(args.table)
    return asyncio.run(register(AccountStore(table), args.peer_id))


if __name__ == "__main__":
    sys.exit(main())
