"""Pagination sessions: accumulation, caps and deduplication across calls."""

from .sessions import (
    ALLOWED_TRANSITIONS, ExtractionSession, SessionAggregator,
    SESSION_BUSY, SESSION_COMPLETE, SESSION_EXISTS, UNKNOWN_SESSION,
)

__all__ = [
    'ALLOWED_TRANSITIONS', 'ExtractionSession', 'SessionAggregator',
    'SESSION_BUSY', 'SESSION_COMPLETE', 'SESSION_EXISTS', 'UNKNOWN_SESSION',
]
