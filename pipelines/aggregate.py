"""Bin transactions into (area, quarter) buckets and compute bucket statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from pipelines.model import Transaction
from pipelines.quarters import QuarterKey, quarter_for

logger = logging.getLogger(__name__)


def median(values: Sequence[float]) -> float | None:
    """Standard median; ``None`` for an empty sequence."""

    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


@dataclass
class AreaQuarterBucket:
    """Transactions of one area within one calendar quarter."""

    area: str
    quarter: QuarterKey
    count: int = 0
    total_value: float = 0.0
    median_price: float | None = None
    avg_unit_price: float | None = None
    prices: list[float] = field(default_factory=list, repr=False)
    unit_prices: list[float] = field(default_factory=list, repr=False)

    def add(self, transaction: Transaction) -> None:
        self.count += 1
        self.total_value += transaction.price
        self.prices.append(transaction.price)
        if transaction.unit_price is not None and transaction.unit_price > 0:
            self.unit_prices.append(transaction.unit_price)

    def finalize(self) -> None:
        self.median_price = median(self.prices)
        if self.unit_prices:
            self.avg_unit_price = sum(self.unit_prices) / len(self.unit_prices)
        else:
            self.avg_unit_price = None

    @property
    def avg_price(self) -> float:
        return self.total_value / self.count if self.count else 0.0


class AggregateIndex:
    """Read-only area -> quarter -> bucket index shared by the detectors."""

    def __init__(self, buckets: dict[str, dict[QuarterKey, AreaQuarterBucket]]):
        self._buckets = buckets

    def __len__(self) -> int:
        return sum(len(quarters) for quarters in self._buckets.values())

    def areas(self) -> list[str]:
        return sorted(self._buckets)

    def series(self, area: str) -> list[AreaQuarterBucket]:
        """Buckets for ``area`` in chronological order."""

        quarters = self._buckets.get(area, {})
        return [quarters[key] for key in sorted(quarters)]

    def bucket(self, area: str, quarter: QuarterKey) -> AreaQuarterBucket | None:
        return self._buckets.get(area, {}).get(quarter)

    def quarters(self) -> list[QuarterKey]:
        keys: set[QuarterKey] = set()
        for quarters in self._buckets.values():
            keys.update(quarters)
        return sorted(keys)

    def latest_quarter(self) -> QuarterKey | None:
        quarters = self.quarters()
        return quarters[-1] if quarters else None

    def __iter__(self) -> Iterator[AreaQuarterBucket]:
        for area in self.areas():
            yield from self.series(area)


def bin_transactions(transactions: Iterable[Transaction]) -> AggregateIndex:
    """Route transactions into buckets and finalize their statistics.

    Transactions without an area or a date are dropped and are not counted in
    any bucket. A bucket exists only for pairs that received at least one
    transaction.
    """

    buckets: dict[str, dict[QuarterKey, AreaQuarterBucket]] = {}
    dropped = 0
    for transaction in transactions:
        area = transaction.area
        if not area or transaction.transaction_date is None:
            dropped += 1
            continue
        quarter = quarter_for(transaction.transaction_date)
        area_quarters = buckets.setdefault(area, {})
        bucket = area_quarters.get(quarter)
        if bucket is None:
            bucket = area_quarters[quarter] = AreaQuarterBucket(area=area, quarter=quarter)
        bucket.add(transaction)

    for area_quarters in buckets.values():
        for bucket in area_quarters.values():
            bucket.finalize()

    if dropped:
        logger.debug("Dropped %s transactions without area or date.", dropped)
    return AggregateIndex(buckets)


__all__ = ["AggregateIndex", "AreaQuarterBucket", "bin_transactions", "median"]
