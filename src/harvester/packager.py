"""Result packaging: records plus diagnostics into an ExtractionResponse."""

from __future__ import annotations

from collections import Counter
from typing import List, Optional

from .models import (
    Diagnostics, ExtractionResponse, NormalizedRecord, Rejection,
    SessionSummary, StrategyName,
)
from .utils import gzip_ndjson_b64


def pack_records(records: List[NormalizedRecord]) -> str:
    """gzip NDJSON, base64 encoded, one camelCase record per line."""
    return gzip_ndjson_b64(record.model_dump(mode="json", by_alias=True) for record in records)


def build_diagnostics(
    rejections: List[Rejection],
    *,
    notes: Optional[List[str]] = None,
    stability_timed_out: bool = False,
    stability_cancelled: bool = False,
    page_type: Optional[str] = None,
    source_detail: Optional[str] = None,
    error: Optional[str] = None,
) -> Diagnostics:
    reasons = Counter(rejection.reason.value for rejection in rejections)
    return Diagnostics(
        stability_timed_out=stability_timed_out,
        stability_cancelled=stability_cancelled,
        rejected_count=len(rejections),
        rejection_reasons=dict(reasons),
        notes=list(notes or []),
        page_type=page_type,
        source_detail=source_detail,
        error=error,
    )


def package_result(
    *,
    records: List[NormalizedRecord],
    session_records: List[NormalizedRecord],
    diagnostics: Diagnostics,
    session: SessionSummary,
    strategy_used: StrategyName = StrategyName.NONE,
    timing_ms: int = 0,
) -> ExtractionResponse:
    """Successful call: ``records`` are this call's, the payload holds the whole session."""
    return ExtractionResponse(
        ok=True,
        strategy_used=strategy_used,
        record_count=len(records),
        records=records,
        full_payload=pack_records(session_records),
        timing_ms=timing_ms,
        diagnostics=diagnostics,
        session=session,
    )


def package_refusal(code: str, *, session: Optional[SessionSummary] = None, detail: Optional[str] = None,
                    timing_ms: int = 0) -> ExtractionResponse:
    """Structured ``ok: false`` answer for session-state refusals."""
    return ExtractionResponse(
        ok=False,
        timing_ms=timing_ms,
        diagnostics=Diagnostics(error=code, notes=[detail] if detail else []),
        session=session,
    )
