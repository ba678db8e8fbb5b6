"""Title normalisation and equivalence rules."""

from __future__ import annotations

import pytest

from app.matching import (
    find_equivalent,
    normalize_title,
    tight_key,
    title_variants,
    titles_equivalent,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Breaking Bad (2008)", "breaking bad"),
        ("Во все тяжкое / Breaking Bad", "breaking bad"),
        ("  The Wire  ", "the wire"),
        ("Dark/Тьма (2017)", "тьма"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_title(raw, expected) -> None:
    assert normalize_title(raw) == expected


def test_tight_key_strips_colons_hyphens_and_whitespace() -> None:
    assert tight_key("Spider-Man: No Way Home (2021)") == "spidermannowayhome"


def test_dual_language_title_exposes_both_halves() -> None:
    variants = title_variants("Во все тяжкое / Breaking Bad (2008)")

    assert "breaking bad" in variants
    assert "во все тяжкое" in variants


def test_breaking_bad_matches_dual_language_record() -> None:
    assert titles_equivalent("Breaking Bad (2008)", "Во все тяжкое / Breaking Bad")


def test_containment_is_directional_either_way() -> None:
    assert titles_equivalent("Fargo", "Fargo: Year Five")
    assert titles_equivalent("Fargo: Year Five", "Fargo")


def test_tight_keys_match_despite_punctuation() -> None:
    assert titles_equivalent("Spider-Man: Homecoming", "Spiderman Homecoming")


def test_unrelated_titles_do_not_match() -> None:
    assert not titles_equivalent("The Crown", "Succession")


def test_empty_titles_never_match() -> None:
    assert not titles_equivalent("", "Anything")
    assert not titles_equivalent(None, None)


def test_find_equivalent_returns_first_match() -> None:
    assert find_equivalent("Dark (2017)", ["Ozark", "Тьма / Dark", "Dark Matter"]) == "Тьма / Dark"
    assert find_equivalent("Severance", ["Ozark"]) is None
