"""Ref filters for push triggers.

Patterns follow the GitHub Actions filter cheat sheet:

- ``*`` matches zero or more characters, but not ``/``
- ``**`` matches zero or more of any character
- ``?`` / ``+`` match zero-or-one / one-or-more of the preceding character
- ``[...]`` matches one character from a set or range
- ``\\`` escapes the next character
- a leading ``!`` negates; the last matching pattern wins
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from .events import PushEvent, RefKind


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a filter pattern (without a leading ``!``) into a regex."""

    # (regex fragment, whether a following ?/+ may quantify it)
    tokens: list[tuple[str, bool]] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                tokens.append((".*", False))
                i += 2
                continue
            tokens.append(("[^/]*", False))
        elif c in "?+":
            if tokens and tokens[-1][1]:
                tokens.append((c, False))
            else:
                tokens.append((re.escape(c), True))
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1 or end == i + 1:
                tokens.append((re.escape(c), True))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                tokens.append((f"[{body}]", True))
                i = end + 1
                continue
        elif c == "\\" and i + 1 < n:
            tokens.append((re.escape(pattern[i + 1]), True))
            i += 2
            continue
        else:
            tokens.append((re.escape(c), True))
        i += 1
    return re.compile("".join(fragment for fragment, _ in tokens))


def pattern_matches(pattern: str, name: str) -> bool:
    return compile_pattern(pattern).fullmatch(name) is not None


@dataclass(frozen=True, slots=True)
class RefFilter:
    """An ordered list of patterns for one ref kind.

    With ``ignore=True`` the filter behaves like ``branches-ignore`` /
    ``tags-ignore``: matching names are excluded instead of included.
    """

    patterns: tuple[str, ...]
    ignore: bool = False

    def matches(self, name: str) -> bool:
        matched = False
        for raw in self.patterns:
            negated = raw.startswith("!")
            pattern = raw[1:] if negated else raw
            if pattern_matches(pattern, name):
                matched = not negated
        return matched

    def admits(self, name: str) -> bool:
        matched = self.matches(name)
        return not matched if self.ignore else matched


@dataclass(frozen=True, slots=True)
class TriggerFilter:
    """The ``on.push`` filter of a workflow.

    When neither kind has a filter every push is admitted. When only one kind
    has a filter, pushes of the other kind never trigger the workflow.
    """

    branches: RefFilter | None = None
    tags: RefFilter | None = None

    def for_kind(self, kind: RefKind) -> RefFilter | None:
        return self.tags if kind is RefKind.TAG else self.branches

    def admits(self, event: PushEvent) -> bool:
        if self.branches is None and self.tags is None:
            return True
        ref_filter = self.for_kind(event.ref_kind)
        if ref_filter is None:
            return False
        return ref_filter.admits(event.ref_name)


DEFAULT_BRANCH_PATTERNS: tuple[str, ...] = ("**",)
DEFAULT_TAG_PATTERNS: tuple[str, ...] = ("v[0-9]+.*",)

DEFAULT_TRIGGER = TriggerFilter(
    branches=RefFilter(DEFAULT_BRANCH_PATTERNS),
    tags=RefFilter(DEFAULT_TAG_PATTERNS),
)
