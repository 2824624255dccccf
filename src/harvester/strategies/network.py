"""Network-capture strategy: read records out of result API responses."""

from __future__ import annotations

import json
import re
from typing import List

from ..binding import CapturedResponse
from ..models import RawCandidate, Rejection, RejectionReason, StrategyName
from ..reliability.errors import ErrorContext, MalformedCapture
from ..utils import extract_domain, looks_like_json
from .base import MAX_ROWS, NOT_APPLICABLE, AttemptResult, ExtractionStrategy, StrategyContext, _log
from .shapes import ShapeMatch, find_record_arrays, map_row

_PREFERRED_URL_RE = re.compile(r"hotel|results|search", re.I)


def _rank(response: CapturedResponse, page_host: str) -> int:
    """Lower is better: same-origin result endpoints first."""
    same_origin = extract_domain(response.url) == page_host
    preferred = bool(_PREFERRED_URL_RE.search(response.url))
    return (0 if same_origin else 1) + (0 if preferred else 2)


class NetworkCaptureStrategy(ExtractionStrategy):
    name = StrategyName.NETWORK

    async def attempt(self, context: StrategyContext) -> AttemptResult:
        pattern = re.compile(context.config.capture.result_url_pattern, re.I)
        relevant = [
            response for response in context.captured
            if pattern.search(response.url)
            and 200 <= response.status < 400
            and looks_like_json(response.body[:64], response.content_type)
        ]
        if not relevant:
            return NOT_APPLICABLE

        page_host = extract_domain(context.page_url)
        relevant.sort(key=lambda response: _rank(response, page_host))

        candidates: List[RawCandidate] = []
        endpoints: List[str] = []
        for response in relevant:
            try:
                document = json.loads(response.body)
            except ValueError as e:
                error = MalformedCapture(
                    f"Unparseable capture from {response.url}: {e}",
                    context=ErrorContext(
                        session_id=context.request.session_id,
                        strategy=self.name.value,
                        url=response.url,
                    ),
                    cause=e,
                )
                _log(context.logger, "info", error.message)
                context.rejections.append(Rejection(
                    reason=RejectionReason.MALFORMED_CAPTURE,
                    strategy=self.name,
                    detail=response.url,
                ))
                continue

            shape = find_record_arrays(document)
            if not isinstance(shape, ShapeMatch):
                _log(context.logger, "debug", f"No records in {response.url}: {shape.reason}")
                continue

            _log(context.logger, "info", f"📡 {len(shape.rows)} rows at {shape.path} in {response.url}")
            endpoints.append(response.url)
            candidates.extend(context.candidates(self.name, [map_row(row) for row in shape.rows]))

        if endpoints:
            context.source_detail = f"xhr={endpoints[0]}"
            context.notes.extend(f"xhr={url}" for url in endpoints)
        return candidates[:MAX_ROWS]
