from datetime import date
from itertools import count

from pipelines.model import MarketSignal, Transaction, YieldOpportunityEvidence

_ids = count(1)


def make_transactions(
    area: str | None,
    on: date | None,
    prices: list[float],
    *,
    unit_price: float | None = None,
    category: str = "sale",
) -> list[Transaction]:
    """Build sale transactions for one area and date, one per price."""

    return [
        Transaction(
            id=f"txn-{next(_ids):06d}",
            transaction_date=on,
            category=category,
            area=area,
            property_type="Unit",
            price=price,
            unit_price=unit_price,
        )
        for price in prices
    ]


def make_volume_signal(area: str, count_: int = 40, tenant_id: str = "tenant-1") -> MarketSignal:
    return MarketSignal(
        org_id=tenant_id,
        type="yield_opportunity",
        severity="watch",
        geo_id=area,
        geo_name=area,
        metric="transaction_volume",
        current_value=count_,
        confidence_score=0.85,
        evidence=YieldOpportunityEvidence(
            quarter="2024-Q2",
            transaction_count=count_,
            total_value=count_ * 1_000_000.0,
            avg_price=1_000_000,
            area_name=area,
        ),
        signal_key=f"anchor:2024-06-30|geoId:{area}|type:yield_opportunity",
    )
