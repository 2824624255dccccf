"""Strategy chain coordinator: one stability wait, then one ordered chain pass."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .binding import PageBinding
from .config.production import HarvesterConfig, get_config
from .dedup import passes_quality_gate
from .models import (
    ExtractionRequest, NormalizedRecord, Rejection, RejectionReason,
    StabilityReport, StrategyName,
)
from .normalizer import normalize_record
from .observability.metrics import HarvestMetrics
from .reliability.errors import (
    BindingUnavailable, EnhancedError, ErrorContext, ErrorHandler,
    MissingCoreFields, NoStrategySucceeded, StabilityTimeout,
)
from .stability import Clock, Sleep, StabilityDetector
from .strategies import (
    NOT_APPLICABLE, ExtractionStrategy, StrategyContext, default_chain, detect_page_type, get_pack, results_container,
)


@dataclass
class ChainResult:
    """Outcome of one chain pass, before session merging."""
    strategy_used: StrategyName = StrategyName.NONE
    records: List[NormalizedRecord] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    stability: Optional[StabilityReport] = None
    page_type: Optional[str] = None
    source_detail: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    timing_ms: int = 0


class StrategyChain:
    """Runs the stability wait and the ordered strategies for one request."""

    def __init__(
        self,
        binding: PageBinding,
        *,
        config: Optional[HarvesterConfig] = None,
        metrics: Optional[HarvestMetrics] = None,
        strategies: Optional[List[ExtractionStrategy]] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.binding = binding
        self.config = config or get_config()
        self.metrics = metrics or HarvestMetrics()
        self.strategies = strategies if strategies is not None else default_chain()
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger("harvester.coordinator")
        self.error_handler = ErrorHandler(self.logger)

    async def wait_for_stability(
        self,
        request: ExtractionRequest,
        cancel_event: Optional[asyncio.Event],
        notes: List[str],
        page_type: Optional[str] = None,
    ) -> StabilityReport:
        """Wait for the page to settle; timeout, cancel or a page error yields an uncertain report."""
        settings = self.config.stability
        scroll_target = request.scroll_target
        if scroll_target and scroll_target != "window":
            container = scroll_target
        else:
            container = results_container(get_pack(page_type), request.dom_selector_override)
        detector = StabilityDetector(self.binding, clock=self._clock, sleep=self._sleep, cancel_event=cancel_event)

        started = self._clock()
        try:
            report = await detector.until_stable(
                poll_interval_ms=settings.poll_interval_ms,
                required_stable_ticks=settings.required_stable_ticks,
                network_idle_ms=settings.network_idle_ms,
                hard_ceiling_ms=settings.hard_ceiling_ms,
                container_selector=container,
            )
        except StabilityTimeout as e:
            e.context.session_id = request.session_id
            self.error_handler.handle(e)
            report = e.report or StabilityReport(stable=False, timed_out=True)
            kind = "cancelled" if report.cancelled else "ceiling"
            self.metrics.stability_timeouts_total.labels(kind).inc()
            notes.append(f"stability_uncertain={kind}")
        except BindingUnavailable:
            raise
        except EnhancedError as e:
            self._note_step_error("stability", e, request, notes)
            report = StabilityReport(stable=False, elapsed_ms=int(round((self._clock() - started) * 1000)))
            self.metrics.stability_timeouts_total.labels("error").inc()
            notes.append("stability_uncertain=error")
        finally:
            self.metrics.stability_wait_duration.observe(max(0.0, self._clock() - started))
        return report

    def _note_step_error(self, step: str, error: EnhancedError, request: ExtractionRequest, notes: List[str]) -> None:
        error.context.session_id = request.session_id
        error.context.parameters["step"] = step
        self.error_handler.handle(error)
        notes.append(f"{step}_failed: {error.message}")

    async def _stop_capture(self, request: ExtractionRequest, notes: List[str]) -> list:
        try:
            return await self.binding.stop_network_capture()
        except BindingUnavailable:
            raise
        except EnhancedError as e:
            self._note_step_error("capture", e, request, notes)
            return []

    async def run(
        self,
        request: ExtractionRequest,
        *,
        page_index: int = 0,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChainResult:
        """One full pass. Only ``BindingUnavailable`` escapes."""
        started = self._clock()
        result = ChainResult()

        try:
            result.page_type = await detect_page_type(self.binding, request.page_hint)
        except BindingUnavailable:
            raise
        except EnhancedError as e:
            self._note_step_error("classify", e, request, result.notes)
            result.page_type = "generic"
        result.notes.append(f"pageType={result.page_type}")

        try:
            page_url = await self.binding.page_url()
        except BindingUnavailable:
            raise
        except EnhancedError as e:
            self._note_step_error("page_url", e, request, result.notes)
            page_url = ""

        capturing = True
        try:
            await self.binding.start_network_capture(self.config.capture.result_url_pattern)
        except BindingUnavailable:
            raise
        except EnhancedError as e:
            self._note_step_error("capture", e, request, result.notes)
            capturing = False

        captured = []
        try:
            result.stability = await self.wait_for_stability(request, cancel_event, result.notes, result.page_type)
        finally:
            if capturing:
                captured = await self._stop_capture(request, result.notes)
        result.notes.append(f"captured_responses={len(captured)}")

        for strategy in self.strategies:
            context = StrategyContext(
                binding=self.binding,
                request=request,
                config=self.config,
                page_url=page_url,
                page_type=result.page_type,
                captured=captured,
                logger=self.logger,
            )
            try:
                outcome = await strategy.attempt(context)
            except BindingUnavailable:
                raise
            except EnhancedError as e:
                e.context.session_id = request.session_id
                e.context.strategy = strategy.name.value
                self.error_handler.handle(e)
                result.notes.append(f"{strategy.name.value}: error {e.message}")
                outcome = NOT_APPLICABLE

            result.notes.extend(context.notes)
            result.rejections.extend(context.rejections)

            if outcome is NOT_APPLICABLE:
                self.metrics.strategy_attempts_total.labels(strategy.name.value, "not_applicable").inc()
                continue

            accepted: List[NormalizedRecord] = []
            for candidate in outcome:
                record = normalize_record(
                    candidate,
                    page_index=page_index,
                    base_url=page_url or None,
                    max_image_width=self.config.media.max_image_width,
                    max_images=self.config.media.max_images_per_record,
                    source_detail=context.source_detail,
                )
                if passes_quality_gate(record):
                    accepted.append(record)
                else:
                    gate_error = self.error_handler.handle(MissingCoreFields(
                        f"{record.name or 'unnamed candidate'} failed the quality gate",
                        context=ErrorContext(session_id=request.session_id, strategy=strategy.name.value),
                    ))
                    result.rejections.append(Rejection(
                        reason=RejectionReason.MISSING_CORE_FIELDS,
                        strategy=strategy.name,
                        name=record.name,
                        detail=gate_error.message,
                    ))

            result.notes.append(f"{strategy.name.value}: {len(accepted)}/{len(outcome)} passed gate")
            if not accepted:
                label = "empty" if not outcome else "gated_out"
                self.metrics.strategy_attempts_total.labels(strategy.name.value, label).inc()
                continue

            self.metrics.strategy_attempts_total.labels(strategy.name.value, "succeeded").inc()
            result.strategy_used = strategy.name
            result.records = accepted
            result.source_detail = context.source_detail
            break
        else:
            outcome_code = NoStrategySucceeded(context=ErrorContext(session_id=request.session_id))
            self.error_handler.handle(outcome_code)
            result.notes.append(outcome_code.message)

        elapsed = self._clock() - started
        result.timing_ms = int(round(elapsed * 1000))
        self.metrics.extraction_duration.observe(max(0.0, elapsed))
        self.metrics.extractions_total.labels(
            result.strategy_used.value,
            "records" if result.records else "no_strategy_succeeded",
        ).inc()
        for rejection in result.rejections:
            self.metrics.records_rejected_total.labels(rejection.reason.value).inc()

        self.logger.info(
            f"Chain pass: strategy={result.strategy_used.value} records={len(result.records)} "
            f"rejected={len(result.rejections)} page_type={result.page_type} in {result.timing_ms} ms"
        )
        return result
