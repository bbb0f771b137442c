#!/usr/bin/env python3
"""
Circular Visit History

Bounded, chronologically ordered sequence of visit records. Appending past
the bound evicts exactly the single oldest record, so the length never
exceeds max_visits and stays at max_visits once the buffer is full.
"""

import logging
from typing import Iterable, Iterator, List, Optional, Tuple

from .protocol import VisitRecord


# Default entry-count bound of the chip history partition
DEFAULT_MAX_VISITS = 200

logger = logging.getLogger("HistoryBuffer")


class HistoryBuffer:
    """Oldest-first bounded visit log with FIFO eviction."""

    def __init__(self, max_visits: int = DEFAULT_MAX_VISITS, visits: Iterable[VisitRecord] = ()):
        """
        Initialize the buffer.

        Args:
            max_visits: Maximum number of retained records.
            visits: Existing records, oldest first. If more than max_visits
                are given only the newest max_visits are kept.
        """
        if max_visits <= 0:
            raise ValueError("max_visits must be positive")
        self._max_visits = max_visits
        self._visits: List[VisitRecord] = list(visits)

        overflow = len(self._visits) - max_visits
        if overflow > 0:
            logger.warning(f"Loaded {len(self._visits)} visits, dropping {overflow} oldest (bound {max_visits})")
            del self._visits[:overflow]

    @property
    def max_visits(self) -> int:
        return self._max_visits

    @property
    def is_full(self) -> bool:
        return len(self._visits) >= self._max_visits

    def append(self, record: VisitRecord) -> Optional[VisitRecord]:
        """
        Append a record, evicting the oldest one if the bound is exceeded.

        Returns:
            The evicted record, or None if nothing was evicted.
        """
        self._visits.append(record)
        if len(self._visits) > self._max_visits:
            evicted = self._visits.pop(0)
            logger.debug(f"Evicted oldest visit {evicted.date} {evicted.diagnosis_code}")
            return evicted
        return None

    def chronological(self) -> List[VisitRecord]:
        """Records oldest to newest (copy)."""
        return list(self._visits)

    def reverse_chronological(self) -> List[VisitRecord]:
        """Records newest to oldest (copy)."""
        return self._visits[::-1]

    def latest(self, limit: int) -> List[VisitRecord]:
        """Up to `limit` most recent records, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._visits[-limit:]))

    def total_bytes(self) -> int:
        return sum(v.encoded_size for v in self._visits)

    def snapshot(self) -> Tuple[VisitRecord, ...]:
        return tuple(self._visits)

    def restore(self, snapshot: Tuple[VisitRecord, ...]):
        """Reset contents to a previous snapshot."""
        self._visits = list(snapshot)

    def __iter__(self) -> Iterator[VisitRecord]:
        return iter(self._visits)

    def __len__(self) -> int:
        return len(self._visits)
