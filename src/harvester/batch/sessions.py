"""Pagination session aggregation.

Sessions follow ``Idle -> Extracting -> AwaitingMore -> Extracting -> ... ->
Complete`` and are owned exclusively by the ``SessionAggregator``:

- Records accumulate across calls sharing one ``sessionId``
- Every accepted record is deduplicated against the whole session
- Page, record and wall-clock caps force ``Complete``
- Completed ids are remembered so reuse is refused
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..binding import PageBinding
from ..config.production import HarvesterConfig
from ..coordinator import ChainResult, StrategyChain
from ..dedup import Deduplicator
from ..models import (
    Action, ExtractionRequest, ExtractionResponse, NormalizedRecord, Rejection,
    RejectionReason, SessionState, SessionSummary,
)
from ..observability.metrics import HarvestMetrics
from ..packager import build_diagnostics, package_refusal, package_result
from ..reliability.errors import BindingUnavailable, EnhancedError, ErrorContext, ErrorHandler, InvalidTransition

ALLOWED_TRANSITIONS: Dict[SessionState, Tuple[SessionState, ...]] = {
    SessionState.IDLE: (SessionState.EXTRACTING, SessionState.COMPLETE),
    SessionState.EXTRACTING: (SessionState.AWAITING_MORE, SessionState.COMPLETE),
    SessionState.AWAITING_MORE: (SessionState.EXTRACTING, SessionState.COMPLETE),
    SessionState.COMPLETE: (),
}

# Refusal codes
UNKNOWN_SESSION = "unknown_session"
SESSION_COMPLETE = "session_complete"
SESSION_BUSY = "session_busy"
SESSION_EXISTS = "session_exists"
EXTRACTION_FAILED = "extraction_failed"

MAX_TOMBSTONES = 10000


@dataclass
class ExtractionSession:
    """Accumulated state for one ``sessionId``."""
    session_id: str
    similarity_threshold: float
    started_at: float
    state: SessionState = SessionState.IDLE
    page_index: int = 0
    records: List[NormalizedRecord] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    completion_cause: Optional[str] = None
    deduplicator: Deduplicator = field(init=False)

    def __post_init__(self) -> None:
        self.deduplicator = Deduplicator(similarity_threshold=self.similarity_threshold)

    def transition(self, new_state: SessionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Illegal session transition {self.state.value} -> {new_state.value}",
                context=ErrorContext(session_id=self.session_id),
            )
        self.state = new_state

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            state=self.state,
            page_index=self.page_index,
            total_records=len(self.records),
        )


class SessionAggregator:
    """Validates session state, runs chain passes and merges their records."""

    def __init__(
        self,
        chain: StrategyChain,
        *,
        config: Optional[HarvesterConfig] = None,
        metrics: Optional[HarvestMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.chain = chain
        self.config = config or chain.config
        self.metrics = metrics or chain.metrics
        self._clock = clock
        self.logger = logger or logging.getLogger("harvester.sessions")
        self.error_handler = ErrorHandler(self.logger)
        self._sessions: Dict[str, ExtractionSession] = {}
        self._completed: "OrderedDict[str, str]" = OrderedDict()

    @property
    def binding(self) -> PageBinding:
        return self.chain.binding

    def get(self, session_id: str) -> Optional[ExtractionSession]:
        return self._sessions.get(session_id)

    def is_completed(self, session_id: str) -> bool:
        return session_id in self._completed

    def cancel(self, session_id: str) -> bool:
        """End a running stability wait as if it had timed out."""
        session = self._sessions.get(session_id)
        if session is None or session.state != SessionState.EXTRACTING:
            return False
        session.cancel_event.set()
        self.logger.info(f"Cancel requested for session {session_id}")
        return True

    # ───────── request handling ─────────

    async def handle(self, request: ExtractionRequest) -> ExtractionResponse:
        started = self._clock()
        session_id = request.session_id

        if session_id in self._completed:
            return self._refuse(SESSION_COMPLETE, request, started, detail=self._completed[session_id])

        session = self._sessions.get(session_id)
        if session is not None and session.state == SessionState.EXTRACTING:
            return self._refuse(SESSION_BUSY, request, started, session)

        if request.action == Action.EXTRACT:
            if session is not None:
                return self._refuse(SESSION_EXISTS, request, started, session)
            session = self._open(session_id)
            return await self._extract(session, request, started)

        if session is None:
            return self._refuse(UNKNOWN_SESSION, request, started)

        if request.action == Action.END_SESSION:
            return self._end(session, started)

        if self._wall_clock_exceeded(session):
            self._complete(session, "wall_clock")
            return package_result(
                records=[],
                session_records=session.records,
                diagnostics=build_diagnostics([], notes=["session_cap_reached=wall_clock"]),
                session=session.summary(),
                timing_ms=self._elapsed_ms(started),
            )

        notes = await self._trigger_more(session, request)
        return await self._extract(session, request, started, notes)

    # ───────── internals ─────────

    def _open(self, session_id: str) -> ExtractionSession:
        session = ExtractionSession(
            session_id=session_id,
            similarity_threshold=self.config.dedup.similarity_threshold,
            started_at=self._clock(),
        )
        self._sessions[session_id] = session
        self.metrics.active_sessions.inc()
        self.logger.info(f"Session {session_id} opened")
        return session

    def _complete(self, session: ExtractionSession, cause: str) -> None:
        """Force terminal state, destroy the session and remember its id."""
        if session.state != SessionState.COMPLETE:
            session.transition(SessionState.COMPLETE)
        session.completion_cause = cause
        if self._sessions.pop(session.session_id, None) is not None:
            self.metrics.active_sessions.dec()
        self._completed[session.session_id] = cause
        while len(self._completed) > MAX_TOMBSTONES:
            self._completed.popitem(last=False)
        self.metrics.sessions_completed_total.labels(cause).inc()
        self.logger.info(
            f"Session {session.session_id} complete ({cause}): "
            f"{len(session.records)} records over {session.page_index} pages"
        )

    def _wall_clock_exceeded(self, session: ExtractionSession) -> bool:
        return self._clock() - session.started_at >= self.config.session.max_wall_clock_seconds

    async def _trigger_more(self, session: ExtractionSession, request: ExtractionRequest) -> List[str]:
        """Click the load-more control or scroll the container, between passes only."""
        notes: List[str] = []
        try:
            if request.load_more_selector:
                await self.binding.click_element(request.load_more_selector)
                notes.append(f"clicked={request.load_more_selector}")
            elif request.scroll_target:
                await self.binding.scroll_container(request.scroll_target)
                notes.append(f"scrolled={request.scroll_target}")
        except BindingUnavailable:
            self._complete(session, "binding_unavailable")
            raise
        except EnhancedError as e:
            e.context.session_id = session.session_id
            self.error_handler.handle(e)
            notes.append(f"load_more_failed: {e.message}")
        return notes

    async def _extract(
        self,
        session: ExtractionSession,
        request: ExtractionRequest,
        started: float,
        notes: Optional[List[str]] = None,
    ) -> ExtractionResponse:
        session.transition(SessionState.EXTRACTING)
        session.cancel_event.clear()
        try:
            result = await self.chain.run(request, page_index=session.page_index, cancel_event=session.cancel_event)
        except BindingUnavailable:
            self._complete(session, "binding_unavailable")
            raise
        except Exception as e:
            enhanced = self.error_handler.handle(e, ErrorContext(session_id=session.session_id))
            session.transition(SessionState.AWAITING_MORE)
            self.logger.warning(f"Pass failed for session {session.session_id}, session stays open")
            return package_refusal(
                EXTRACTION_FAILED,
                session=session.summary(),
                detail=enhanced.message,
                timing_ms=self._elapsed_ms(started),
            )

        accepted, rejections = self._merge(session, request, result)
        session.page_index += 1

        cause = self._cap_breached(session)
        if cause:
            self._complete(session, cause)
        else:
            session.transition(SessionState.AWAITING_MORE)

        stability = result.stability
        diagnostics = build_diagnostics(
            result.rejections + rejections,
            notes=(notes or []) + result.notes + ([f"session_cap_reached={cause}"] if cause else []),
            stability_timed_out=bool(stability and stability.timed_out),
            stability_cancelled=bool(stability and stability.cancelled),
            page_type=result.page_type,
            source_detail=result.source_detail,
        )
        return package_result(
            records=accepted,
            session_records=session.records,
            diagnostics=diagnostics,
            session=session.summary(),
            strategy_used=result.strategy_used,
            timing_ms=self._elapsed_ms(started),
        )

    def _merge(
        self, session: ExtractionSession, request: ExtractionRequest, result: ChainResult
    ) -> Tuple[List[NormalizedRecord], List[Rejection]]:
        """Dedup against the session and apply per-call and session record caps."""
        accepted: List[NormalizedRecord] = []
        rejections: List[Rejection] = []
        session_cap = self.config.session.max_records

        for record in result.records:
            duplicate_of = session.deduplicator.find_duplicate(record)
            if duplicate_of is not None:
                rejections.append(Rejection(
                    reason=RejectionReason.DUPLICATE,
                    strategy=result.strategy_used,
                    name=record.name,
                    detail=duplicate_of,
                ))
                continue

            over_call_cap = request.max_records is not None and len(accepted) >= request.max_records
            if over_call_cap or len(session.records) >= session_cap:
                rejections.append(Rejection(
                    reason=RejectionReason.RECORD_CAP_REACHED,
                    strategy=result.strategy_used,
                    name=record.name,
                ))
                continue

            session.deduplicator.remember(record)
            session.records.append(record)
            accepted.append(record)

        if accepted:
            self.metrics.records_accepted_total.labels(result.strategy_used.value).inc(len(accepted))
        for rejection in rejections:
            self.metrics.records_rejected_total.labels(rejection.reason.value).inc()
        return accepted, rejections

    def _cap_breached(self, session: ExtractionSession) -> Optional[str]:
        caps = self.config.session
        if len(session.records) >= caps.max_records:
            return "record_cap"
        if session.page_index >= caps.max_pages:
            return "page_cap"
        if self._wall_clock_exceeded(session):
            return "wall_clock"
        return None

    def _end(self, session: ExtractionSession, started: float) -> ExtractionResponse:
        records = list(session.records)
        self._complete(session, "end_session")
        return package_result(
            records=records,
            session_records=records,
            diagnostics=build_diagnostics([], notes=["session_ended"]),
            session=session.summary(),
            timing_ms=self._elapsed_ms(started),
        )

    def _refuse(
        self,
        code: str,
        request: ExtractionRequest,
        started: float,
        session: Optional[ExtractionSession] = None,
        detail: Optional[str] = None,
    ) -> ExtractionResponse:
        self.logger.info(f"Refused {request.action.value} for session {request.session_id}: {code}")
        return package_refusal(
            code,
            session=session.summary() if session else None,
            detail=detail,
            timing_ms=self._elapsed_ms(started),
        )

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._clock() - started) * 1000))
