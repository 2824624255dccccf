"""Hydration-state strategy: framework state globals and inline JSON blobs."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from ..models import StrategyName
from .base import NOT_APPLICABLE, AttemptResult, ExtractionStrategy, StrategyContext, _log
from .shapes import ShapeMatch, find_record_arrays, map_row

HYDRATION_KEYS = [
    "__INITIAL_STATE__",
    "__PRELOADED_STATE__",
    "__REDUX_STATE__",
    "__NUXT__",
    "__NEXT_DATA__",
    "__APOLLO_STATE__",
    "__INITIAL_DATA__",
]

# Serializes globals inside the page; circular or exotic values come back null.
COLLECT_STATE_JS = """
(keys) => {
  const out = { globals: {}, inline: [] };
  for (const k of keys) {
    if (!(k in window)) continue;
    try { out.globals[k] = JSON.parse(JSON.stringify(window[k])); }
    catch (e) { out.globals[k] = null; }
  }
  for (const s of document.querySelectorAll('script[type="application/json"]')) {
    out.inline.push({ id: s.id || null, text: (s.textContent || '').slice(0, 2000000) });
  }
  return out;
}
"""


class HydrationStateStrategy(ExtractionStrategy):
    name = StrategyName.HYDRATION

    async def attempt(self, context: StrategyContext) -> AttemptResult:
        state = await context.binding.evaluate_in_page(COLLECT_STATE_JS, HYDRATION_KEYS)
        if not isinstance(state, dict):
            return NOT_APPLICABLE

        globals_: Dict[str, Any] = state.get("globals") or {}
        inline: List[Dict[str, Any]] = [blob for blob in state.get("inline") or [] if isinstance(blob, dict)]
        if not any(value is not None for value in globals_.values()) and not inline:
            return NOT_APPLICABLE

        for key in HYDRATION_KEYS:
            document = globals_.get(key)
            if document is None:
                continue
            shape = find_record_arrays(document)
            if isinstance(shape, ShapeMatch):
                context.source_detail = f"hydrationKey={key}"
                context.notes.append(f"hydrationKey={key} path={shape.path}")
                _log(context.logger, "info", f"💧 {len(shape.rows)} rows under {key}.{shape.path}")
                return context.candidates(self.name, [map_row(row) for row in shape.rows])
            _log(context.logger, "debug", f"{key}: {shape.reason}")

        for blob in inline:
            try:
                document = json.loads(blob.get("text") or "")
            except ValueError:
                _log(context.logger, "debug", f"Skipping unparseable inline JSON #{blob.get('id')}")
                continue
            shape = find_record_arrays(document)
            if isinstance(shape, ShapeMatch):
                label = blob.get("id") or "inline"
                context.source_detail = f"hydrationKey={label}"
                context.notes.append(f"hydration:inline id={label} path={shape.path}")
                return context.candidates(self.name, [map_row(row) for row in shape.rows])

        return []
