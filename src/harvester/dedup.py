"""Record quality gate and session-scoped deduplication.

Matching order:
1. Site-provided id (exact)
2. Name+location fold (exact)
3. Name+location fold (Jaro-Winkler, default >= 0.92)

First seen wins. Later duplicates are dropped, never merged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from rapidfuzz.distance import JaroWinkler

from .models import NormalizedRecord
from .normalizer import fold_text

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.92


def passes_quality_gate(record: NormalizedRecord) -> bool:
    """Name AND at least one of {price-like field, availability flag, external id}."""
    if not record.name:
        return False
    price = record.price
    has_price = price.amount_minor_units is not None or bool(price.raw and re.search(r"\d", price.raw))
    return has_price or record.availability is not None or bool(record.external_id)


@dataclass
class Fingerprint:
    """Dedup key. Derived on the fly, never a durable identity."""
    external_id: Optional[str]
    fold: str

    @classmethod
    def of(cls, record: NormalizedRecord) -> "Fingerprint":
        return cls(
            external_id=record.external_id,
            fold=f"{fold_text(record.name)} | {fold_text(record.location)}".strip(" |"),
        )

    @property
    def key(self) -> str:
        return f"id:{self.external_id}" if self.external_id else f"nl:{self.fold}"


@dataclass
class Deduplicator:
    """Remembers every accepted fingerprint of one session."""
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    _ids: Dict[str, str] = field(default_factory=dict)
    _folds: Dict[str, Optional[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._folds)

    def find_duplicate(self, record: NormalizedRecord) -> Optional[str]:
        """Return the fingerprint key this record duplicates, or None."""
        fp = Fingerprint.of(record)

        if fp.external_id and fp.external_id in self._ids:
            return f"id:{fp.external_id}"

        if not fp.fold:
            return None

        if fp.fold in self._folds:
            seen_id = self._folds[fp.fold]
            if not (fp.external_id and seen_id and seen_id != fp.external_id):
                return f"nl:{fp.fold}"

        for seen_fold, seen_id in self._folds.items():
            # Two distinct site ids are two distinct properties.
            if fp.external_id and seen_id and seen_id != fp.external_id:
                continue
            score = JaroWinkler.normalized_similarity(fp.fold, seen_fold)
            if score >= self.similarity_threshold:
                logger.debug(f"Fuzzy duplicate {fp.fold!r} ~ {seen_fold!r} ({score:.3f})")
                return f"nl:{seen_fold}"
        return None

    def remember(self, record: NormalizedRecord) -> str:
        fp = Fingerprint.of(record)
        if fp.external_id:
            self._ids[fp.external_id] = fp.fold
        if fp.fold and fp.fold not in self._folds:
            self._folds[fp.fold] = fp.external_id
        return fp.key
