#!/usr/bin/env python3
"""
Chip Capacity Accounting

Reports how the fixed chip budget is split between the critical block and
the visit history. The byte budget is advisory: an over-budget chip is
reported with negative available bytes, never trimmed here.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import PatientChip


@dataclass(frozen=True)
class StorageUsage:
    """Snapshot of chip utilisation."""
    critical_bytes: int
    history_bytes: int
    available_bytes: int  # May be negative (over budget)
    percent_used: float
    visit_count: int = 0

    @property
    def used_bytes(self) -> int:
        return self.critical_bytes + self.history_bytes

    @property
    def over_budget(self) -> bool:
        return self.available_bytes < 0

    @property
    def available_kb(self) -> float:
        return round_half_away(Decimal(self.available_bytes) / 1024)

    def to_dict(self) -> dict:
        return {
            "critical_bytes": self.critical_bytes,
            "history_bytes": self.history_bytes,
            "available_bytes": self.available_bytes,
            "percent_used": self.percent_used,
            "visit_count": self.visit_count,
        }


def round_half_away(value: Decimal, places: str = "0.1") -> float:
    """Round to one decimal place, halves away from zero."""
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


def compute_usage(chip: PatientChip) -> StorageUsage:
    """
    Compute chip utilisation.

    Pure function; valid for a chip with no visits (critical block only).
    """
    critical = chip.critical_block_size
    history = chip.history.total_bytes()
    total = chip.total_capacity

    percent = Decimal((critical + history) * 100) / Decimal(total)

    return StorageUsage(
        critical_bytes=critical,
        history_bytes=history,
        available_bytes=total - critical - history,
        percent_used=round_half_away(percent),
        visit_count=len(chip.history),
    )
