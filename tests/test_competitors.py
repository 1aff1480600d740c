from unittest.mock import patch

import pytest

from instagen_core.utils.competitors import parse_competitors, strip_handle


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, []),
        ("", []),
        ('["@gymshark", " nike ", ""]', ["@gymshark", "nike"]),
        ("gymshark, nike,, adidas ", ["gymshark", "nike", "adidas"]),
        (["nike", None, "  "], ["nike"]),
        (("nike", "adidas"), ["nike", "adidas"]),
        ("[]", []),
    ],
)
def test_parse_competitors(raw, expected):
    assert parse_competitors(raw) == expected


@pytest.mark.parametrize("raw", ['["nike",', '[nike]', 42])
def test_parse_competitors_bad_values_are_empty(raw):
    with patch("instagen_core.utils.competitors.logger") as mock_logger:
        assert parse_competitors(raw) == []

    mock_logger.warning.assert_called_once()


def test_strip_handle():
    assert strip_handle("  @nike ") == "nike"
    assert strip_handle("nike") == "nike"
