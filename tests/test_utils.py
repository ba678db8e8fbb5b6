import pytest

from app.errors import InputValidationError
from app.utils import extract_suggestion_lines, extract_year, parse_suggestion, rating_is_valid


def test_parse_suggestion_with_year():
    suggestion = parse_suggestion("Breaking Bad (2008)")
    assert suggestion.title == "Breaking Bad"
    assert suggestion.year == 2008
    assert suggestion.raw == "Breaking Bad (2008)"


def test_parse_suggestion_strips_list_markers():
    suggestion = parse_suggestion("3. **Dark (2017)**")
    assert suggestion.title == "Dark"
    assert suggestion.year == 2017


def test_parse_suggestion_without_year():
    suggestion = parse_suggestion("Severance")
    assert suggestion.title == "Severance"
    assert suggestion.year is None


def test_parse_suggestion_keeps_numeric_titles():
    suggestion = parse_suggestion("1917 (2019)")
    assert suggestion.title == "1917"
    assert suggestion.year == 2019


@pytest.mark.parametrize("line", ["", "   ", "(2019)", "- "])
def test_parse_suggestion_rejects_empty_titles(line):
    with pytest.raises(InputValidationError):
        parse_suggestion(line)


def test_extract_suggestion_lines_keeps_titled_lines_only():
    content = """Here are some picks:
1. Dark (2017)
2. The Leftovers (2014)
Enjoy!
- Fargo (2014)
"""
    assert extract_suggestion_lines(content) == [
        "Dark (2017)",
        "The Leftovers (2014)",
        "Fargo (2014)",
    ]


def test_extract_suggestion_lines_respects_limit():
    content = "\n".join(f"Show {index} (20{index:02d})" for index in range(20))
    assert len(extract_suggestion_lines(content, limit=12)) == 12


def test_extract_year_and_rating_validation():
    assert extract_year("Tokyo Vice (2022)") == 2022
    assert extract_year("No year") is None
    assert rating_is_valid(1) and rating_is_valid(10)
    assert not rating_is_valid(0)
    assert not rating_is_valid(11)
    assert not rating_is_valid(True)
