#!/usr/bin/env python3
"""
Card Store for the MySihat Clinic Terminal

Simple SQLite-based directory of identity cards. Each card keeps its
critical block (profile) and its visit history as encoded chip payloads,
so every stored visit goes through the visit codec on the way in and out.
"""

import json
import logging
import sqlite3
from typing import List, Optional

from .models import DEFAULT_DB_PATH, ChipConfig, PatientChip, PatientProfile
from .protocol import VisitCodec


# =============================================================================
# Demo Patients
# =============================================================================

# (identity, profile, [(date, diagnosis, medication), ...])
DEMO_PATIENTS = [
    (
        "920815-01-5234",
        PatientProfile("Ahmad bin Abdullah", "O+", ("Penicillin",), ("E11", "I10")),
        [
            ("251105", "E11", "A10BA02"),
            ("251120", "I10", "C09AA02"),
            ("251201", "R50", "N02BE01"),
        ],
    ),
    (
        "880523-14-6789",
        PatientProfile("Siti binti Hassan", "A+", ("Sulfa drugs",), ("E78.5",)),
        [
            ("251015", "J06.9", "J01CA04"),
            ("251110", "E78.5", "C10AA01"),
        ],
    ),
    (
        "750310-03-4521",
        PatientProfile("Kumar a/l Ramasamy", "B+"),
        [],
    ),
]


# =============================================================================
# Storage Manager
# =============================================================================

class ChipStore:
    """
    SQLite-backed identity directory.

    lookup() returns a fresh PatientChip per call; the store, not the
    session, owns the persisted state.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        codec: VisitCodec = None,
        chip_config: ChipConfig = None,
    ):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file.
            codec: Visit codec used to encode/decode stored visits.
            chip_config: Chip geometry applied to loaded cards.
        """
        self.db_path = db_path
        self.codec = codec or VisitCodec()
        self.chip_config = chip_config or ChipConfig()
        self.logger = logging.getLogger("ChipStore")
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cards (
                    identity TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    blood_type TEXT NOT NULL,
                    allergies TEXT NOT NULL,
                    chronic TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS visits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    payload BLOB NOT NULL
                )
            """)

            # Index for "all visits for this card"
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_visits_identity
                ON visits(identity, seq)
            """)

            conn.commit()

    def register(self, identity: str, profile: PatientProfile, visits=()) -> PatientChip:
        """
        Register a card (replacing any existing one with the same identity).

        Args:
            identity: Identity card number.
            profile: Critical block contents.
            visits: Existing visits as (date, diagnosis, medication) tuples.

        Returns:
            The stored chip.
        """
        records = [self.codec.build_record(*v) for v in visits]
        chip = PatientChip.create(
            identity,
            profile,
            records,
            max_visits=self.chip_config.max_visit_count,
            critical_block_size=self.chip_config.critical_block_size,
            total_capacity=self.chip_config.total_capacity,
        )
        self.save(chip)
        return chip

    def save(self, chip: PatientChip):
        """Persist a chip's critical block and full visit history in one transaction."""
        payloads = [
            (chip.identity, seq, self.codec.payload_for(record))
            for seq, record in enumerate(chip.history)
        ]
        profile = chip.profile

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cards (identity, name, blood_type, allergies, chronic)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    chip.identity,
                    profile.name,
                    profile.blood_type,
                    json.dumps(list(profile.allergies)),
                    json.dumps(list(profile.chronic)),
                ),
            )
            conn.execute("DELETE FROM visits WHERE identity = ?", (chip.identity,))
            conn.executemany(
                "INSERT INTO visits (identity, seq, payload) VALUES (?, ?, ?)",
                payloads,
            )
            conn.commit()

        self.logger.debug(f"Saved card {chip.identity} ({len(payloads)} visits)")

    def lookup(self, identity: str) -> Optional[PatientChip]:
        """
        Look up a card by identity number.

        Returns:
            The chip, or None if the identity is unknown.
        """
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT name, blood_type, allergies, chronic FROM cards WHERE identity = ?",
                (identity,),
            ).fetchone()
            if row is None:
                return None

            cursor = conn.execute(
                "SELECT payload FROM visits WHERE identity = ? ORDER BY seq",
                (identity,),
            )
            payloads = [r["payload"] for r in cursor]

        profile = PatientProfile(
            name=row["name"],
            blood_type=row["blood_type"],
            allergies=tuple(json.loads(row["allergies"])),
            chronic=tuple(json.loads(row["chronic"])),
        )
        records = [self.codec.record_from_payload(p) for p in payloads]

        return PatientChip.create(
            identity,
            profile,
            records,
            max_visits=self.chip_config.max_visit_count,
            critical_block_size=self.chip_config.critical_block_size,
            total_capacity=self.chip_config.total_capacity,
        )

    def get_all_identities(self) -> List[str]:
        """Get list of all registered identity numbers."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("SELECT identity FROM cards ORDER BY identity")
            return [row[0] for row in cursor]

    def get_visit_count(self, identity: str = None) -> int:
        """
        Get stored visit count.

        Args:
            identity: Optional identity to filter by.
        """
        with sqlite3.connect(self.db_path) as conn:
            if identity:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM visits WHERE identity = ?",
                    (identity,),
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM visits")
            return cursor.fetchone()[0]

    def seed_demo_patients(self, overwrite: bool = False) -> int:
        """
        Register the demo patients.

        Args:
            overwrite: Replace cards that already exist.

        Returns:
            Number of cards registered.
        """
        existing = set(self.get_all_identities())
        count = 0
        for identity, profile, visits in DEMO_PATIENTS:
            if identity in existing and not overwrite:
                continue
            self.register(identity, profile, visits)
            count += 1

        if count:
            self.logger.info(f"Seeded {count} demo patient(s)")
        return count
