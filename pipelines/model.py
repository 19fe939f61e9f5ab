"""Canonical data model for transactions and derived market signals."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

SignalType = Literal["price_change", "yield_opportunity", "supply_spike"]
Severity = Literal["info", "watch", "urgent"]
SignalStatus = Literal["new", "acknowledged", "dismissed", "routed"]

DELTA_SIGNAL_TYPES: frozenset[str] = frozenset({"price_change", "supply_spike"})


class Transaction(BaseModel):
    """A single sale record as imported from the land-department feed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., description="Upstream transaction identifier.")
    transaction_date: Optional[date] = Field(
        default=None, description="Instance date of the transaction."
    )
    category: str = Field(..., description="Transaction group (e.g. 'sale').")
    area: Optional[str] = Field(default=None, description="Area name in English.")
    property_type: Optional[str] = None
    property_sub_type: Optional[str] = None
    rooms: Optional[str] = None
    price: float = Field(..., gt=0, description="Transaction value (actual worth).")
    unit_price: Optional[float] = Field(
        default=None, description="Price per square metre, when recorded."
    )
    procedure_area: Optional[float] = Field(
        default=None, description="Registered area in square metres."
    )


class PriceChangeEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["price_change"] = "price_change"
    current_quarter: str
    prev_quarter: str
    current_sample_size: int
    prev_sample_size: int
    area_name: str


class YieldOpportunityEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["yield_opportunity"] = "yield_opportunity"
    quarter: str
    transaction_count: int
    total_value: float
    avg_price: int
    avg_price_per_sqm: Optional[int] = Field(
        default=None,
        description="Rounded mean unit price; null when no transaction carried one.",
    )
    area_name: str


class SupplySpikeEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["supply_spike"] = "supply_spike"
    current_quarter: str
    prev_quarter: str
    current_count: int
    prev_count: int
    area_name: str


Evidence = Annotated[
    Union[PriceChangeEvidence, YieldOpportunityEvidence, SupplySpikeEvidence],
    Field(discriminator="kind"),
]


class MarketSignal(BaseModel):
    """A classified market observation ready to be upserted under ``signal_key``."""

    model_config = ConfigDict(frozen=True)

    org_id: str = Field(..., description="Tenant that owns the signal.")
    source_type: str = Field(
        default="official", description="Data provenance tag ('official', 'portal')."
    )
    source: str = Field(default="dld", description="Upstream dataset identifier.")
    type: SignalType
    severity: Severity
    status: SignalStatus = Field(default="new", description="Workflow status for consumers.")
    geo_type: str = "area"
    geo_id: str
    geo_name: str
    segment: str = "residential"
    metric: str = Field(..., description="Metric the detector compared.")
    timeframe: str = "QoQ"
    current_value: float
    prev_value: Optional[float] = None
    delta_value: Optional[float] = None
    delta_pct: Optional[float] = Field(
        default=None, description="Relative change as a fraction (0.08 == 8%)."
    )
    confidence_score: float = Field(..., ge=0, le=1)
    evidence: Evidence
    signal_key: str = Field(..., description="Deterministic natural key.")

    @model_validator(mode="after")
    def _check_shape(self) -> "MarketSignal":
        if self.evidence.kind != self.type:
            raise ValueError(
                f"evidence kind {self.evidence.kind!r} does not match signal type {self.type!r}"
            )
        deltas = (self.prev_value, self.delta_value, self.delta_pct)
        if self.type in DELTA_SIGNAL_TYPES:
            if any(value is None for value in deltas):
                raise ValueError(
                    f"{self.type} signals require prev_value, delta_value and delta_pct"
                )
        elif any(value is not None for value in deltas):
            raise ValueError(f"{self.type} signals carry only a current value")
        return self


class StoredSignal(MarketSignal):
    """A persisted signal row with its system timestamps."""

    created_at: datetime
    updated_at: datetime


__all__ = [
    "DELTA_SIGNAL_TYPES",
    "Evidence",
    "MarketSignal",
    "PriceChangeEvidence",
    "Severity",
    "SignalStatus",
    "SignalType",
    "StoredSignal",
    "SupplySpikeEvidence",
    "Transaction",
    "YieldOpportunityEvidence",
]
