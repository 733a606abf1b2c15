"""Render {{placeholder}} email templates with synonyms, loops and conditionals.

Supported syntax:

    {{key}}                  value of key (snake_case, camelCase and known
                             synonyms all resolve to the same variable)
    {{#items}}...{{/items}}  repeated once per element when items is a list,
                             otherwise rendered only when the value is truthy
    {{^flag}}...{{/flag}}    rendered only when flag is missing, falsy or empty

Tags are case-insensitive and may contain whitespace inside the braces.
Placeholders that resolve to nothing render as an empty string.
"""

from __future__ import annotations

import dataclasses
import html
import re
from collections.abc import Mapping
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")
SECTION_PATTERN = re.compile(
    r"\{\{\s*([#^])\s*(\w+)\s*\}\}(.*?)\{\{\s*/\s*\2\s*\}\}",
    re.DOTALL | re.IGNORECASE,
)

# Any member of a group satisfies a lookup under any other member's spelling
KEY_GROUPS: tuple[tuple[str, ...], ...] = (
    # Names
    ("user_name", "first_name", "userName", "firstName"),
    ("last_name", "lastName"),
    ("full_name", "fullName"),
    # Contest fields
    ("challenge_title", "contest_title", "contestTitle"),
    ("challenge_description", "contest_description", "contestDescription"),
    ("end_date", "contest_end_date", "contestDeadline"),
    ("prize_amount", "contest_prize", "contestPrize"),
    ("contest_url", "contestUrl"),
    ("results_url", "contestResultsUrl"),
    # Per-user stats
    ("submissions_count", "user_submissions_count", "submission_count", "submissionsCount", "submissionCount",
     "submissionsThisWeek"),
    ("wins_count", "user_wins_count", "win_count", "winsCount", "winCount", "contests_won", "contestsWon"),
    ("votes_count", "user_total_votes", "vote_count", "votesCount", "voteCount", "votes_received", "votesReceived"),
    # Platform stats
    ("active_contests_count", "active_contests", "activeContestsCount"),
    ("new_members_count", "new_members", "newMembersCount"),
    ("new_contests_count", "newContestsCount"),
    ("week_range", "weekRange"),
    ("total_submissions", "total_submissions_count", "totalSubmissions", "totalSubmissionsCount"),
    ("total_votes", "total_votes_count", "totalVotes", "totalVotesCount"),
    ("total_participants", "total_participants_count", "totalParticipants", "totalParticipantsCount"),
    # Links
    ("dashboard_url", "dashboardUrl"),
    ("unsubscribe_url", "unsubscribeUrl"),
    ("website_url", "websiteUrl"),
)


def to_snake_case(key: str) -> str:
    """userName -> user_name, 'Contest Title' -> contest_title."""
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", str(key))
    s = re.sub(r"[^a-zA-Z0-9]+", "_", s)
    s = re.sub(r"_{2,}", "_", s)
    return s.strip("_").lower()


def to_camel_case(key: str) -> str:
    """user_name -> userName (camelCase input is returned unchanged)."""
    head, *rest = to_snake_case(key).split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


_GROUP_INDEX: dict[str, tuple[str, ...]] = {
    to_snake_case(alias): group for group in KEY_GROUPS for alias in group
}


def build_lookup(variables: Mapping[str, Any]) -> dict[str, Any]:
    """Map every accepted spelling (lowercased) to its value.

    Precedence: exact keys, then their snake/camel variants, then synonyms.
    """
    lookup: dict[str, Any] = {}
    for key, value in variables.items():
        lookup[str(key).lower()] = value
    for key, value in variables.items():
        for variant in (to_snake_case(key), to_camel_case(key)):
            lookup.setdefault(variant.lower(), value)
    for key, value in variables.items():
        for alias in _GROUP_INDEX.get(to_snake_case(key), ()):
            for variant in (alias, to_snake_case(alias), to_camel_case(alias)):
                lookup.setdefault(variant.lower(), value)
    return lookup


def _as_mapping(item: Any) -> Mapping[str, Any]:  # noqa: ANN401
    if isinstance(item, Mapping):
        return item
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return dataclasses.asdict(item)
    if hasattr(item, "model_dump"):
        return item.model_dump()
    return {".": item}


def _stringify(value: Any) -> str:  # noqa: ANN401
    return "" if value is None else str(value)


def _is_truthy(value: Any) -> bool:  # noqa: ANN401
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(value)


def _substitute(template: str, lookup: Mapping[str, Any]) -> str:
    """Replace resolvable placeholders; leave the rest for later passes."""

    def replacer(match: re.Match) -> str:
        key = match.group(1).lower()
        if key in lookup:
            return _stringify(lookup[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replacer, template)


def _render_sections(template: str, lookup: Mapping[str, Any]) -> str:
    def replacer(match: re.Match) -> str:
        kind, name, content = match.group(1), match.group(2).lower(), match.group(3)
        value = lookup.get(name)

        if kind == "^":
            return "" if _is_truthy(value) else _render_sections(content, lookup)

        if isinstance(value, (list, tuple)):
            return "".join(_render(content, build_lookup(_as_mapping(item))) for item in value)
        if _is_truthy(value):
            return _render_sections(content, lookup)
        return ""

    return SECTION_PATTERN.sub(replacer, template)


def _render(template: str, lookup: Mapping[str, Any]) -> str:
    return _render_sections(_substitute(template, lookup), lookup)


def render_template(template: str | None, variables: Mapping[str, Any] | None = None) -> str:
    """Render a subject or body. Pure: same input, same output."""
    if not template:
        return ""
    rendered = _render(template, build_lookup(variables or {}))
    return PLACEHOLDER_PATTERN.sub("", rendered)


_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLOCK_END_PATTERN = re.compile(r"</(p|div|h[1-6]|li|tr)>|<br\s*/?>", re.IGNORECASE)
_STRIP_PATTERN = re.compile(r"<(style|script)[^>]*>.*?</\1>", re.DOTALL | re.IGNORECASE)


def html_to_text(html_content: str) -> str:
    """Plain-text fallback for an HTML body."""
    text = _STRIP_PATTERN.sub("", html_content)
    text = _BLOCK_END_PATTERN.sub("\n", text)
    text = html.unescape(_TAG_PATTERN.sub("", text))
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line).strip()
