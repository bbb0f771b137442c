#!/usr/bin/env python3
"""
Data Models for the MySihat Clinic Terminal

This module contains the chip model, session stages and configuration.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

import yaml

from .history import DEFAULT_MAX_VISITS, HistoryBuffer
from .protocol import VisitRecord


# =============================================================================
# Constants (fixed chip geometry)
# =============================================================================

# Reserved critical block: identity, blood type, allergies, chronic conditions
CRITICAL_BLOCK_SIZE = 1024

# Total chip capacity (30KB)
TOTAL_CAPACITY = 30720

# Maximum visits kept in the history ring
MAX_VISIT_COUNT = DEFAULT_MAX_VISITS

# Simulated card reader latency (seconds)
DEFAULT_READ_DELAY = 1.5
DEFAULT_WRITE_DELAY = 2.0

DEFAULT_DB_PATH = "mysihat_cards.db"


# =============================================================================
# Enums
# =============================================================================

class SessionStage(Enum):
    """Card interaction stages."""
    NO_CARD = "no_card"
    LOADED = "loaded"
    PENDING = "pending"
    COMMITTED = "committed"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class PatientProfile:
    """Critical block contents (never evicted)."""
    name: str
    blood_type: str = ""
    allergies: Tuple[str, ...] = ()
    chronic: Tuple[str, ...] = ()  # Diagnosis codes


@dataclass
class PatientChip:
    """
    The storage region of one identity card.

    The visit entry-count bound is enforced by the history buffer; the byte
    budget is reported by the capacity accountant but never enforced.
    """
    identity: str
    profile: PatientProfile
    history: HistoryBuffer = field(default_factory=HistoryBuffer)
    critical_block_size: int = CRITICAL_BLOCK_SIZE
    total_capacity: int = TOTAL_CAPACITY

    @classmethod
    def create(
        cls,
        identity: str,
        profile: PatientProfile,
        visits: List[VisitRecord] = None,
        max_visits: int = MAX_VISIT_COUNT,
        critical_block_size: int = CRITICAL_BLOCK_SIZE,
        total_capacity: int = TOTAL_CAPACITY,
    ) -> "PatientChip":
        """Build a chip from an existing visit sequence (oldest first)."""
        return cls(
            identity=identity,
            profile=profile,
            history=HistoryBuffer(max_visits, visits or ()),
            critical_block_size=critical_block_size,
            total_capacity=total_capacity,
        )

    @property
    def visits(self) -> List[VisitRecord]:
        """Visits oldest first."""
        return self.history.chronological()

    @property
    def max_visit_count(self) -> int:
        return self.history.max_visits


@dataclass
class ChipConfig:
    """Chip geometry."""
    critical_block_size: int = CRITICAL_BLOCK_SIZE
    total_capacity: int = TOTAL_CAPACITY
    max_visit_count: int = MAX_VISIT_COUNT


@dataclass
class ApiConfig:
    """API server configuration."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class ClinicConfig:
    """Configuration for the clinic terminal."""
    chip: ChipConfig = field(default_factory=ChipConfig)

    # Card reader settings
    read_delay: float = DEFAULT_READ_DELAY
    write_delay: float = DEFAULT_WRITE_DELAY

    # Storage settings
    db_path: str = DEFAULT_DB_PATH
    seed_demo_patients: bool = True

    # Optional vocabulary file (built-in tables if empty)
    codes_file: str = ""

    # API settings
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "mysihat.log"

    @classmethod
    def from_yaml(cls, path: str) -> "ClinicConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        chip = data.get("chip", {})
        reader = data.get("reader", {})
        storage = data.get("storage", {})
        api_data = data.get("api", {})

        return cls(
            chip=ChipConfig(
                critical_block_size=chip.get("critical_block_size", CRITICAL_BLOCK_SIZE),
                total_capacity=chip.get("total_capacity", TOTAL_CAPACITY),
                max_visit_count=chip.get("max_visit_count", MAX_VISIT_COUNT),
            ),
            read_delay=reader.get("read_delay_seconds", DEFAULT_READ_DELAY),
            write_delay=reader.get("write_delay_seconds", DEFAULT_WRITE_DELAY),
            db_path=storage.get("db_path", DEFAULT_DB_PATH),
            seed_demo_patients=storage.get("seed_demo_patients", True),
            codes_file=data.get("codes", {}).get("file", ""),
            api=ApiConfig(
                enabled=api_data.get("enabled", False),
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8080),
            ),
            log_level=data.get("logging", {}).get("level", "INFO"),
            log_file=data.get("logging", {}).get("file", "mysihat.log"),
        )

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "chip": {
                "critical_block_size": self.chip.critical_block_size,
                "total_capacity": self.chip.total_capacity,
                "max_visit_count": self.chip.max_visit_count,
            },
            "reader": {
                "read_delay_seconds": self.read_delay,
                "write_delay_seconds": self.write_delay,
            },
            "storage": {
                "db_path": self.db_path,
                "seed_demo_patients": self.seed_demo_patients,
            },
            "codes": {
                "file": self.codes_file,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }
