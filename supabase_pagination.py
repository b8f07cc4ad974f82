"""
Supabase pagination helpers.

PostgREST caps responses (typically 1000 rows per request). Import history
can exceed that for a busy practice, so list reads page through `.range()`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


def fetch_all_rows(
    query: Any,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_rows: Optional[int] = None,
    order_by: Optional[str] = None,
    desc: bool = False,
    raise_errors: bool = False,
) -> List[Dict[str, Any]]:
    """
    Fetch all rows for a supabase-py query using `.range()` pagination.

    Args:
        query: A supabase-py request builder (e.g. client.table(...).select(...).eq(...))
        page_size: Rows per request
        max_rows: Optional cap on the total number of rows
        order_by: Column for deterministic paging
        desc: Order descending
        raise_errors: Re-raise request errors instead of returning what was read so far
    """
    page_size = int(page_size) if page_size and int(page_size) > 0 else DEFAULT_PAGE_SIZE

    if order_by:
        query = query.order(order_by, desc=desc)

    out: List[Dict[str, Any]] = []
    start = 0
    while True:
        try:
            resp = query.range(start, start + page_size - 1).execute()
        except Exception as e:
            if raise_errors:
                raise
            logger.warning("Paged fetch stopped after %d rows: %s", len(out), e)
            break
        data = resp.data or []
        out.extend(data)

        if max_rows is not None and len(out) >= max_rows:
            return out[:max_rows]
        if len(data) < page_size:
            break
        start += page_size

    return out
