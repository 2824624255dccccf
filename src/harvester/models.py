"""Typed request, record and response models for result harvesting.

All wire-facing models use camelCase aliases so callers can send
``{"sessionId": ..., "action": "extract"}`` while Python code keeps
snake_case attributes.
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model with camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Action(str, Enum):
    """Caller actions accepted by the aggregator."""
    EXTRACT = "extract"
    CONTINUE = "continue"
    END_SESSION = "end_session"


class StrategyName(str, Enum):
    """Extraction strategies, in chain priority order."""
    NETWORK = "network"
    HYDRATION = "hydration"
    DOM = "dom"
    HEURISTIC = "heuristic"
    NONE = "none"


class PriceBasis(str, Enum):
    PER_NIGHT = "per_night"
    PER_STAY = "per_stay"


class RejectionReason(str, Enum):
    """Reason codes carried by every rejected candidate."""
    MISSING_CORE_FIELDS = "missing_core_fields"
    DUPLICATE = "duplicate"
    RECORD_CAP_REACHED = "record_cap_reached"
    MALFORMED_CAPTURE = "malformed_capture"


class SessionState(str, Enum):
    """Pagination session lifecycle states."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    AWAITING_MORE = "awaiting_more"
    COMPLETE = "complete"


class ExtractionRequest(WireModel):
    """One caller request. Immutable once built."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str = Field(min_length=1)
    action: Action = Action.EXTRACT
    page_hint: Optional[str] = None
    max_records: Optional[int] = Field(default=None, ge=1)
    dom_selector_override: Optional[str] = None
    load_more_selector: Optional[str] = None
    scroll_target: Optional[str] = None


class StabilitySignal(WireModel):
    """Readiness signals sampled on a single stability tick."""
    mutation_count: int = 0
    last_mutation_at: Optional[float] = None
    pending_network_requests: int = 0
    last_network_activity_at: Optional[float] = None


class StabilityReport(WireModel):
    stable: bool
    ticks: int = 0
    elapsed_ms: int = 0
    timed_out: bool = False
    cancelled: bool = False
    last_signal: Optional[StabilitySignal] = None


class RawCandidate(WireModel):
    """Unnormalized row produced by one strategy."""
    source_strategy: StrategyName
    payload: Dict[str, Any]
    extracted_at: datetime.datetime = Field(default_factory=datetime.datetime.utcnow)


class Rating(WireModel):
    raw: Optional[float] = None
    scale: Optional[int] = None
    normalized: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    text: Optional[str] = None


class Price(WireModel):
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None
    basis: Optional[PriceBasis] = None
    taxes_included: Optional[bool] = None
    raw: Optional[str] = None
    ambiguous: bool = False


class Provenance(WireModel):
    strategy: StrategyName
    page_index: int
    source_detail: Optional[str] = None


class NormalizedRecord(WireModel):
    """Canonical harvested record."""
    id: str
    external_id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    rating: Rating = Field(default_factory=Rating)
    stars: Optional[Rating] = None
    price: Price = Field(default_factory=Price)
    media: List[str] = Field(default_factory=list)
    availability: Optional[bool] = None
    brand: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    detail_url: Optional[str] = None
    cancellation: Optional[str] = None
    refundable: Optional[bool] = None
    provenance: Provenance


class Rejection(WireModel):
    reason: RejectionReason
    strategy: StrategyName
    name: Optional[str] = None
    detail: Optional[str] = None


class Diagnostics(WireModel):
    stability_timed_out: bool = False
    stability_cancelled: bool = False
    rejected_count: int = 0
    rejection_reasons: Dict[str, int] = Field(default_factory=dict)
    notes: List[str] = Field(default_factory=list)
    page_type: Optional[str] = None
    source_detail: Optional[str] = None
    error: Optional[str] = None


class SessionSummary(WireModel):
    session_id: str
    state: SessionState
    page_index: int = 0
    total_records: int = 0


class ExtractionResponse(WireModel):
    ok: bool
    strategy_used: StrategyName = StrategyName.NONE
    record_count: int = 0
    records: List[NormalizedRecord] = Field(default_factory=list)
    full_payload: Optional[str] = None
    timing_ms: int = 0
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    session: Optional[SessionSummary] = None
