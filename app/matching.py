"""Title normalisation and fuzzy equivalence rules.

kino.pub titles and model-generated titles rarely agree character for character:
the service stores dual-language names such as ``"Во все тяжкое / Breaking Bad"``,
appends release years, and the model drops or rewrites subtitles. Two titles are
treated as the same work when, after stripping the year suffix and the dual-language
prefix, one contains the other, or when their punctuation-free "tight" keys match.
"""

from __future__ import annotations

import re
from typing import Iterable

YEAR_SUFFIX_RE = re.compile(r"\s*\(\d{4}\)\s*$")
TIGHT_STRIP_RE = re.compile(r"[:\-\s]+")


def strip_year_suffix(title: str) -> str:
    """Remove a trailing ``(YYYY)`` marker."""

    return YEAR_SUFFIX_RE.sub("", title).strip()


def strip_dual_prefix(title: str) -> str:
    """Drop everything up to and including the first ``/``."""

    if "/" not in title:
        return title.strip()
    _, _, remainder = title.partition("/")
    return remainder.strip() or title.strip()


def normalize_title(title: str | None) -> str:
    """Return the canonical comparison form of ``title``.

    Lower-case, then strip the year suffix, then the dual-language prefix.
    """

    if not title:
        return ""
    lowered = title.lower().strip()
    return strip_dual_prefix(strip_year_suffix(lowered))


def tight_key(title: str | None) -> str:
    """Return the normalised title with colons, hyphens and whitespace removed."""

    return TIGHT_STRIP_RE.sub("", normalize_title(title))


def title_variants(title: str | None) -> set[str]:
    """Return every comparison form of ``title``.

    The canonical form is always included. Dual-language titles also contribute the
    full year-stripped string and the half before the slash, so a match on either
    language counts.
    """

    if not title:
        return set()
    lowered = strip_year_suffix(title.lower().strip())
    variants = {normalize_title(title), lowered}
    if "/" in lowered:
        head, _, _ = lowered.partition("/")
        variants.add(head.strip())
    return {variant for variant in variants if variant}


def _tight(value: str) -> str:
    return TIGHT_STRIP_RE.sub("", value)


def titles_equivalent(left: str | None, right: str | None) -> bool:
    """Decide whether two titles name the same work."""

    left_variants = title_variants(left)
    right_variants = title_variants(right)
    if not left_variants or not right_variants:
        return False
    for a in left_variants:
        tight_a = _tight(a)
        for b in right_variants:
            if a in b or b in a:
                return True
            if tight_a and tight_a == _tight(b):
                return True
    return False


def find_equivalent(title: str | None, candidates: Iterable[str]) -> str | None:
    """Return the first candidate equivalent to ``title``, if any."""

    for candidate in candidates:
        if titles_equivalent(title, candidate):
            return candidate
    return None
