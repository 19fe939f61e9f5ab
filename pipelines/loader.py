"""Paginated retrieval of a tenant's sale transactions."""

from __future__ import annotations

import logging

from jobs.config import DEFAULT_SETTINGS
from pipelines.model import Transaction
from storage.base import SignalStore

logger = logging.getLogger(__name__)


async def load_sale_transactions(
    store: SignalStore,
    tenant_id: str,
    *,
    page_size: int = DEFAULT_SETTINGS.page_size,
    category: str = DEFAULT_SETTINGS.sale_category,
) -> list[Transaction]:
    """Fetch every qualifying transaction, one page at a time.

    Pages are requested in order and the loop ends on the first page that is
    shorter than ``page_size``; a store that caps result sizes therefore never
    truncates the set silently. Store errors propagate to the caller.
    """

    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}.")

    transactions: list[Transaction] = []
    offset = 0
    while True:
        page = await store.fetch_sale_transactions(
            tenant_id, category=category, offset=offset, limit=page_size
        )
        transactions.extend(page)
        logger.info("Fetched %s transactions...", len(transactions))
        if len(page) < page_size:
            break
        offset += page_size
    return transactions


__all__ = ["load_sale_transactions"]
