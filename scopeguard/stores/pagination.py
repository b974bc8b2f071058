"""Opaque cursor pagination.

Listings are ordered by (created_at, id). A cursor is the url-safe base64
encoding of the sort key of the last item on the previous page.
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from scopeguard.core.config import get_settings
from scopeguard.core.errors import ValidationError
from scopeguard.schemas.common import Page

T = TypeVar("T")

SortKey = Tuple[datetime, str]


def encode_cursor(created_at: datetime, entity_id: str) -> str:
    raw = json.dumps({"created_at": created_at.isoformat(), "id": entity_id})
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> SortKey:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        return datetime.fromisoformat(data["created_at"]), str(data["id"])
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid pagination cursor", details={"cursor": [cursor]}) from exc


def resolve_limit(limit: Optional[int]) -> int:
    settings = get_settings()
    if not limit or limit < 1:
        return settings.default_page_limit
    return min(limit, settings.max_page_limit)


def build_page(rows: Sequence[T], limit: int, sort_key: Callable[[T], SortKey]) -> Page:
    """Turn up to limit + 1 fetched rows into a page."""
    has_more = len(rows) > limit
    items: List[T] = list(rows[:limit])
    next_cursor = encode_cursor(*sort_key(items[-1])) if has_more and items else None
    return Page(items=items, has_more=has_more, next_cursor=next_cursor)
