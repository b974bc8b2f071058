"""Tests for cursor encoding and page assembly."""

from datetime import datetime

import pytest

from scopeguard.core.config import get_settings
from scopeguard.core.errors import ValidationError
from scopeguard.stores.pagination import build_page, decode_cursor, encode_cursor, resolve_limit


def test_cursor_round_trip():
    created_at = datetime(2024, 5, 1, 8, 30, 15, 123456)
    assert decode_cursor(encode_cursor(created_at, "abc")) == (created_at, "abc")


@pytest.mark.parametrize("cursor", ["not-base64!!", "e30=", "bm90IGpzb24="])
def test_malformed_cursor(cursor):
    with pytest.raises(ValidationError, match="Invalid pagination cursor"):
        decode_cursor(cursor)


def test_resolve_limit_defaults_and_clamps():
    settings = get_settings()
    assert resolve_limit(None) == settings.default_page_limit
    assert resolve_limit(5) == 5
    assert resolve_limit(10_000) == settings.max_page_limit


def test_build_page_with_more():
    rows = [(datetime(2024, 1, day), str(day)) for day in range(1, 5)]
    page = build_page(rows, 3, lambda row: row)

    assert page.items == rows[:3]
    assert page.has_more
    assert decode_cursor(page.next_cursor) == rows[2]


def test_build_page_last():
    rows = [(datetime(2024, 1, 1), "1")]
    page = build_page(rows, 3, lambda row: row)

    assert page.items == rows
    assert not page.has_more
    assert page.next_cursor is None
