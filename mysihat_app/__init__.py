"""
MySihat Clinic Terminal Module

Read and write the medical storage region of a MySihat identity card chip.

Architecture:
    Clinic Terminal (this module)
        │
        ├── Card Reader
        ▼
    Identity Card Chip (30KB)
        - Critical block, 1KB (identity, blood type, allergies, chronic)
        - Visit history ring, up to 200 encoded visits

Chip Write Flow:
    1. Read IC: load the card into a session (NO_CARD -> LOADED)
    2. View records: critical block, history and storage usage
    3. Diagnose: stage an ICD-10 code (LOADED -> PENDING)
    4. Write to chip: encode date|diagnosis|medication and append
       (PENDING -> COMMITTED); the oldest visit is evicted when the ring is full
    5. Next patient: reset (COMMITTED -> NO_CARD)

Usage:
    from mysihat_app import ClinicTerminal, ClinicConfig

    config = ClinicConfig.from_yaml("config.yaml")
    terminal = ClinicTerminal(config)

    terminal.on_visit_committed(lambda ic, visit, evicted: print(f"{ic}: {visit.encoded_size}B"))

    terminal.read_card("920815-01-5234")
    terminal.stage_diagnosis("R51")
    terminal.write_visit("N02BA01")
    print(terminal.get_storage().percent_used)
    terminal.next_patient()
"""

from .capacity import StorageUsage, compute_usage
from .codes import CodeDictionary, CodeEntry, CodeTables, default_code_tables
from .controller import ClinicTerminal
from .errors import (
    ChipError,
    IdentityNotFound,
    IllegalTransition,
    IncompleteVisit,
    InvalidCode,
    InvalidDate,
    MalformedPayload,
)
from .history import HistoryBuffer
from .models import ClinicConfig, PatientChip, PatientProfile, SessionStage
from .protocol import CardImage, VisitCodec, VisitRecord
from .session import CardSession
from .storage import ChipStore

__version__ = "0.3.0"
__all__ = [
    # Terminal
    "ClinicTerminal",
    "ClinicConfig",
    # Chip engine
    "CodeDictionary",
    "CodeEntry",
    "CodeTables",
    "default_code_tables",
    "VisitCodec",
    "VisitRecord",
    "CardImage",
    "HistoryBuffer",
    "PatientChip",
    "PatientProfile",
    "StorageUsage",
    "compute_usage",
    "SessionStage",
    "CardSession",
    "ChipStore",
    # Errors
    "ChipError",
    "IdentityNotFound",
    "InvalidCode",
    "InvalidDate",
    "MalformedPayload",
    "IncompleteVisit",
    "IllegalTransition",
]
