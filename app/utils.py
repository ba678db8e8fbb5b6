"""Utility helpers for the KinoPicks service."""

from __future__ import annotations

import re

from .errors import InputValidationError
from .models import Suggestion

SUGGESTION_RE = re.compile(r"^(?P<title>.+?)\s*\((?P<year>\d{4})\)\s*$")
YEAR_IN_TITLE_RE = re.compile(r"\((\d{4})\)")
LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]+|\d+[.)])\s*")


def extract_year(title: str | None) -> int | None:
    """Return the first ``(YYYY)`` year embedded in a title."""

    if not title:
        return None
    match = YEAR_IN_TITLE_RE.search(title)
    return int(match.group(1)) if match else None


def strip_list_marker(line: str) -> str:
    """Remove a leading bullet or ``1.`` style enumerator."""

    return LIST_MARKER_RE.sub("", line).strip().strip("*_\"'").strip()


def parse_suggestion(line: str) -> Suggestion:
    """Parse one recommender line into a :class:`Suggestion`.

    A trailing four-digit year in parentheses is optional; a line with no title
    raises :class:`InputValidationError`.
    """

    cleaned = strip_list_marker(line or "")
    match = SUGGESTION_RE.match(cleaned)
    if match:
        title = match.group("title").strip()
        year: int | None = int(match.group("year"))
    else:
        title = cleaned
        year = None
    if not title or title.startswith("("):
        raise InputValidationError(f"Unparseable suggestion line: {line!r}")
    return Suggestion(title=title, year=year, raw=line)


def extract_suggestion_lines(content: str, *, limit: int = 12) -> list[str]:
    """Return the lines of a model reply that look like ``Title (Year)``."""

    lines: list[str] = []
    for raw in content.splitlines():
        line = strip_list_marker(raw)
        if "(" in line and ")" in line:
            lines.append(line)
        if len(lines) >= limit:
            break
    return lines


def rating_is_valid(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 10
