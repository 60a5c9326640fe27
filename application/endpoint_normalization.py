"""
Canonical endpoint keys for request metrics.

Raw request paths contain identifiers (habit IDs, dates, friend email
addresses) that would give every resource its own counter.  This module
rewrites those segments to placeholders so that requests to the same route
share one key, for example ``GET /api/habits/abc123`` becomes
``GET /api/habits/:id``.

Rule table
----------
Rules are evaluated in order and the first rule whose pattern fully matches
the path wins.  Ordering matters:

1. Literal sub-routes (``/api/habits/stats``, ``/api/weight/latest``,
   ``/api/friends/request``) are listed before any dynamic rule of the same
   family so that they are never mistaken for identifiers.
2. Longer dynamic patterns (identifier plus date, identifier plus
   sub-resource) precede the single-segment identifier pattern.

Paths that match no rule are returned unchanged.
"""

import re
import typing

# Words under /api/friends/ that name routes rather than friends.
_FRIENDS_RESERVED_SEGMENTS: tuple[str, ...] = ("request", "respond", "requests")

_DATE_SEGMENT = r"\d{4}-\d{2}-\d{2}"
_DYNAMIC_SEGMENT = r"[^/]+"
_FRIEND_SEGMENT = rf"(?!(?:{'|'.join(_FRIENDS_RESERVED_SEGMENTS)})$){_DYNAMIC_SEGMENT}"


class EndpointNormalizationRule(typing.NamedTuple):
    """One ordered rewrite: paths fully matching ``pattern`` become ``replacement``."""

    pattern: re.Pattern[str]
    replacement: str

    def apply(self, path: str) -> str | None:
        if self.pattern.fullmatch(path) is None:
            return None
        return self.replacement


def _literal(path: str) -> EndpointNormalizationRule:
    return EndpointNormalizationRule(re.compile(re.escape(path)), path)


def _dynamic(pattern: str, replacement: str) -> EndpointNormalizationRule:
    return EndpointNormalizationRule(re.compile(pattern), replacement)


ENDPOINT_NORMALIZATION_RULES: tuple[EndpointNormalizationRule, ...] = (
    # ── Habits ──
    _literal("/api/habits/stats"),
    _literal("/api/habits/entries"),
    _dynamic(rf"/api/habits/{_DYNAMIC_SEGMENT}/entries/{_DATE_SEGMENT}", "/api/habits/:id/entries/:date"),
    _dynamic(rf"/api/habits/{_DYNAMIC_SEGMENT}/entries", "/api/habits/:id/entries"),
    _dynamic(rf"/api/habits/{_DYNAMIC_SEGMENT}/stats", "/api/habits/:id/stats"),
    _dynamic(rf"/api/habits/{_DYNAMIC_SEGMENT}", "/api/habits/:id"),
    # ── Weight ──
    _literal("/api/weight/latest"),
    _dynamic(rf"/api/weight/{_DYNAMIC_SEGMENT}", "/api/weight/:date"),
    # ── Friends ──
    *(_literal(f"/api/friends/{reserved}") for reserved in _FRIENDS_RESERVED_SEGMENTS),
    _dynamic(rf"/api/friends/{_FRIEND_SEGMENT}/weight", "/api/friends/:email/weight"),
    _dynamic(rf"/api/friends/{_FRIEND_SEGMENT}/habits/stats", "/api/friends/:email/habits/stats"),
    _dynamic(rf"/api/friends/{_FRIEND_SEGMENT}/habits", "/api/friends/:email/habits"),
    _dynamic(rf"/api/friends/{_FRIEND_SEGMENT}/favorite", "/api/friends/:email/favorite"),
    _dynamic(rf"/api/friends/{_FRIEND_SEGMENT}", "/api/friends/:email"),
)


def strip_query_string(raw_url: str) -> str:
    """Return the path portion of ``raw_url``, without any ``?query``."""
    return raw_url.split("?", 1)[0]


def normalize_path(
    raw_url: str,
    rules: typing.Sequence[EndpointNormalizationRule] = ENDPOINT_NORMALIZATION_RULES,
) -> str:
    """Strip the query string and rewrite identifier segments to placeholders."""
    path = strip_query_string(raw_url)
    for rule in rules:
        replacement = rule.apply(path)
        if replacement is not None:
            return replacement
    return path


def normalize_endpoint(method: str, raw_url: str) -> str:
    """
    Return the canonical endpoint key ``"METHOD /normalised/path"``.

    Total and deterministic: every input string, including the empty
    string and URLs carrying query strings, produces a key.
    """
    return f"{method} {normalize_path(raw_url)}"
