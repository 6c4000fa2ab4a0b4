from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable

from .models import LinkedAccount

_MENTION_PATTERN = re.compile(r"@(\w+)")

AccountLookup = Callable[[Iterable[str]], Awaitable[list[LinkedAccount]]]


def find_mention_names(text: str) -> list[str]:
    """Return distinct lower-cased ``@name`` tokens in order of appearance."""
    seen: dict[str, None] = {}
    for match in _MENTION_PATTERN.finditer(text):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def platform_mention(platform_user_id: str) -> str:
    return f"<@{platform_user_id}>"


def replace_mentions(text: str, accounts: Iterable[LinkedAccount]) -> str:
    """Rewrite every known ``@name`` in a single pass over ``text``."""
    mention_by_name = {
        account.external_username.lower(): platform_mention(account.platform_user_id)
        for account in accounts
    }
    if not mention_by_name:
        return text
    return _MENTION_PATTERN.sub(
        lambda match: mention_by_name.get(match.group(1).lower(), match.group(0)), text
    )


async def resolve_mentions(text: str, lookup: AccountLookup) -> str:
    """Replace ``@name`` tokens of linked players with platform mentions.

    ``lookup`` receives every distinct token at once; unresolved tokens are
    left verbatim.
    """
    names = find_mention_names(text)
    if not names:
        return text
    accounts = await lookup(names)
    return replace_mentions(text, accounts)


__all__ = [
    "find_mention_names",
    "platform_mention",
    "replace_mentions",
    "resolve_mentions",
]
