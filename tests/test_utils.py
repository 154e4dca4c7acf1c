import pytest

from core.utils import collapse, format_time, join_terms, parse_iso_duration


def test_collapse():
    assert collapse("  a \n  b\t c ") == "a b c"


def test_join_terms_skips_empty():
    assert join_terms("Tum Hi Ho", None, "", "  Arijit ", "similar songs") == "Tum Hi Ho Arijit similar songs"
    assert join_terms() == ""


@pytest.mark.parametrize("value, expected", [
    ("PT4M13S", 253),
    ("PT1H2M", 3720),
    ("PT45S", 45),
    ("P1DT2H", 93600),
    ("PT0S", 0),
    ("", 0),
    (None, 0),
    ("4:13", 0),
])
def test_parse_iso_duration(value, expected):
    assert parse_iso_duration(value) == expected


@pytest.mark.parametrize("seconds, expected", [
    (0, "0:00"),
    (5, "0:05"),
    (65, "1:05"),
    (3725, "62:05"),
    (-3, "0:00"),
    (12.9, "0:12"),
])
def test_format_time(seconds, expected):
    assert format_time(seconds) == expected
