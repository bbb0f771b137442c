#!/usr/bin/env python3
"""
MySihat Clinic Terminal

This module acts as the clinic-side controller for identity card chips.
It reads a patient's card, shows the critical block and visit history,
and writes today's consultation back to the chip.

Architecture:
    Clinic Terminal (this Python app)
        │
        ├── Card Session (stage gating)
        ├── Card Reader (simulated card I/O)
        ▼
    Card Store (SQLite)
        - Critical block (identity, blood type, allergies, chronic)
        - Visit history ring (encoded date|diagnosis|medication records)

Features:
- Closed ICD-10 / ATC vocabularies for compact visit encoding
- 200-entry circular visit history with oldest-first eviction
- Chip capacity accounting (critical block + history vs 30KB)
- REST API for web access
"""

import json
import logging
import sys
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pubsub import pub

from .capacity import StorageUsage, compute_usage
from .codes import DIAGNOSIS, MEDICATION, CodeEntry, CodeTables, default_code_tables
from .device import CardReader
from .errors import ChipError, IdentityNotFound, IllegalTransition
from .models import ClinicConfig, PatientChip, SessionStage
from .protocol import VisitCodec, VisitRecord
from .session import TOPIC_STAGE, TOPIC_VISIT_COMMITTED, CardSession
from .storage import ChipStore


class ClinicTerminal:
    """
    Clinic terminal for one card reader.

    All session operations are serialised by a lock so the terminal can be
    shared with the API server threads.
    """

    def __init__(self, config: ClinicConfig, setup_logging: bool = True):
        """
        Initialize the clinic terminal.

        Args:
            config: Clinic configuration object.
            setup_logging: Configure root logging from config.
        """
        self.config = config
        if setup_logging:
            self._setup_logging()

        self.logger = logging.getLogger("ClinicTerminal")

        if config.codes_file:
            self.codes = CodeTables.from_yaml(config.codes_file)
            self.logger.info(f"Loaded vocabulary from {config.codes_file}")
        else:
            self.codes = default_code_tables()

        self.codec = VisitCodec(self.codes)
        self.store = ChipStore(config.db_path, self.codec, config.chip)
        if config.seed_demo_patients:
            self.store.seed_demo_patients()

        # Card reader for chip I/O
        self.reader = CardReader(self.store, config)

        self.session = CardSession(
            lookup=self.reader.read,
            codec=self.codec,
            writer=self.reader.write,
            logger=logging.getLogger("CardSession"),
        )

        self._lock = threading.Lock()

        # pypubsub keeps weak references; keep handlers alive here
        self._handlers: List[Callable] = []

        # Statistics
        self.cards_read = 0
        self.visits_written = 0
        self.visits_evicted = 0
        self.error_count = 0

    def _setup_logging(self):
        """Configure logging."""
        level = getattr(logging, self.config.log_level.upper())

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=[
                logging.FileHandler(self.config.log_file),
                logging.StreamHandler(sys.stdout),
            ],
        )

    @property
    def stage(self) -> SessionStage:
        return self.session.stage

    @property
    def chip(self) -> Optional[PatientChip]:
        return self.session.chip

    # -------------------------------------------------------------------------
    # Public API - Card Interaction
    # -------------------------------------------------------------------------

    def read_card(self, identity: str) -> PatientChip:
        """Load a patient's card into the session."""
        with self._lock:
            try:
                chip = self.session.load(identity)
            except ChipError as e:
                self.error_count += 1
                self.logger.warning(f"Read card failed: {e}")
                raise
            self.cards_read += 1
            return chip

    def stage_diagnosis(self, diagnosis_code: str):
        """Stage today's diagnosis."""
        with self._lock:
            try:
                self.session.stage_diagnosis(diagnosis_code)
            except ChipError as e:
                self.error_count += 1
                self.logger.warning(f"Stage diagnosis failed: {e}")
                raise

    def write_visit(
        self, medication_code: str, date: str = None
    ) -> Tuple[VisitRecord, Optional[VisitRecord], StorageUsage]:
        """
        Write the staged visit to the chip.

        Returns:
            (record, evicted, usage) taken together under the terminal lock.
        """
        with self._lock:
            try:
                record = self.session.commit(medication_code, date)
            except ChipError as e:
                self.error_count += 1
                self.logger.warning(f"Write visit failed: {e}")
                raise
            evicted = self.session.last_evicted
            self.visits_written += 1
            if evicted is not None:
                self.visits_evicted += 1
            return record, evicted, compute_usage(self.session.chip)

    def next_patient(self):
        """Reset the session for the next patient."""
        with self._lock:
            self.session.reset()

    # -------------------------------------------------------------------------
    # Public API - Event Handlers
    # -------------------------------------------------------------------------

    def on_stage_change(self, handler: Callable[[SessionStage, SessionStage], None]):
        """
        Register handler for session stage changes.

        Handler signature: handler(old_stage, new_stage)
        """
        def listener(old_stage, new_stage):
            handler(old_stage, new_stage)

        self._handlers.append(listener)
        pub.subscribe(listener, TOPIC_STAGE)

    def on_visit_committed(self, handler: Callable[[str, VisitRecord, Optional[VisitRecord]], None]):
        """
        Register handler for committed visits.

        Handler signature: handler(identity, record, evicted)
        """
        def listener(identity, record, evicted):
            handler(identity, record, evicted)

        self._handlers.append(listener)
        pub.subscribe(listener, TOPIC_VISIT_COMMITTED)

    def clear_handlers(self):
        """Unsubscribe all registered handlers."""
        for listener in self._handlers:
            for topic in (TOPIC_STAGE, TOPIC_VISIT_COMMITTED):
                if pub.isSubscribed(listener, topic):
                    pub.unsubscribe(listener, topic)
        self._handlers.clear()

    # -------------------------------------------------------------------------
    # Public API - Queries
    # -------------------------------------------------------------------------

    def get_codes(self, kind: str) -> List[CodeEntry]:
        """All codes of a vocabulary ("diagnosis" or "medication")."""
        if kind == DIAGNOSIS:
            return list(self.codes.diagnoses.all_codes())
        if kind == MEDICATION:
            return list(self.codes.medications.all_codes())
        raise ValueError(f"Unknown vocabulary: {kind}")

    def get_storage(self) -> Optional[StorageUsage]:
        """Chip usage for the loaded card, or None if no card is loaded."""
        with self._lock:
            chip = self.session.chip
            if chip is None:
                return None
            return compute_usage(chip)

    def get_history(self, newest_first: bool = True, limit: int = None) -> Optional[List[VisitRecord]]:
        """
        Visit history of the loaded card.

        Args:
            newest_first: Order newest visit first.
            limit: Return at most this many visits.

        Returns:
            The visits, or None if no card is loaded.
        """
        with self._lock:
            chip = self.session.chip
            if chip is None:
                return None
            if newest_first:
                if limit is None:
                    return chip.history.reverse_chronological()
                return chip.history.latest(limit)
            visits = chip.history.chronological()
            return visits if limit is None else visits[:limit]

    def describe_visit(self, record: VisitRecord) -> Dict[str, Any]:
        """Visit record with resolved code names."""
        return {
            "date": record.date,
            "display_date": record.display_date,
            "diagnosis_code": record.diagnosis_code,
            "diagnosis": self.codes.diagnoses.resolve(record.diagnosis_code),
            "medication_code": record.medication_code,
            "medication": self.codes.medications.resolve(record.medication_code),
            "chip_data": self.codec.encode(*record.fields)[0].decode("ascii"),
            "encoded_size": record.encoded_size,
        }

    def describe_card(self, chip: PatientChip) -> Dict[str, Any]:
        """Critical block of a chip with chronic condition names."""
        profile = chip.profile
        return {
            "identity": chip.identity,
            "name": profile.name,
            "blood_type": profile.blood_type,
            "allergies": list(profile.allergies),
            "chronic": [
                {"code": code, "name": self.codes.diagnoses.resolve(code)}
                for code in profile.chronic
            ],
            "visit_count": len(chip.history),
            "max_visit_count": chip.max_visit_count,
        }

    def get_card_info(self) -> Optional[Dict[str, Any]]:
        """Critical block of the loaded card, or None if no card is loaded."""
        with self._lock:
            chip = self.session.chip
            if chip is None:
                return None
            return self.describe_card(chip)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the terminal."""
        with self._lock:
            return {
                "stage": self.session.stage.value,
                "identity": self.session.identity,
                "staged_diagnosis": self.session.staged_diagnosis,
                "registered_cards": len(self.store.get_all_identities()),
                "cards_read": self.cards_read,
                "visits_written": self.visits_written,
                "visits_evicted": self.visits_evicted,
                "errors": self.error_count,
            }

    # -------------------------------------------------------------------------
    # Public API - Data Export
    # -------------------------------------------------------------------------

    def export_data(self, filepath: str = None) -> str:
        """Export the loaded card to a JSON file."""
        with self._lock:
            chip = self.session.chip
            if chip is None:
                raise ValueError("No card loaded")

            export_data = {
                "export_time": datetime.now().isoformat(),
                "card": self.describe_card(chip),
                "storage": compute_usage(chip).to_dict(),
                "visits": [self.describe_visit(v) for v in chip.history.chronological()],
            }

        if filepath is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = f"card_export_{timestamp}.json"

        with open(filepath, "w") as f:
            json.dump(export_data, f, indent=2)

        self.logger.info(f"Card exported to {filepath}")
        return filepath

    def export_card_image(self, identity: str, filepath: str) -> int:
        """
        Write the raw chip image of a registered card.

        Returns:
            Number of bytes written.
        """
        chip = self.store.lookup(identity)
        if chip is None:
            raise IdentityNotFound(identity)

        data = self.reader.dump_image(chip)
        with open(filepath, "wb") as f:
            f.write(data)

        self.logger.info(f"Card image for {identity} written to {filepath}")
        return len(data)

    def restore_card_image(self, identity: str, filepath: str) -> PatientChip:
        """
        Restore a registered card's visit history from a raw chip image.

        Raises:
            IllegalTransition: The card is loaded in the current session.
            IdentityNotFound: No card registered for identity.
            MalformedPayload: File is not a valid card image.
        """
        with open(filepath, "rb") as f:
            data = f.read()

        with self._lock:
            if self.session.identity == identity.strip():
                raise IllegalTransition("restore a loaded card", self.session.stage)
            chip = self.reader.load_image(identity.strip(), data)

        self.logger.info(f"Card {chip.identity} restored from {filepath} ({len(chip.history)} visits)")
        return chip

    # -------------------------------------------------------------------------
    # Public API - Run
    # -------------------------------------------------------------------------

    def run_with_api(self, api_host: str = None, api_port: int = None):
        """
        Run the terminal behind the REST API server (blocking).

        Args:
            api_host: Host to bind API server to (uses config if None).
            api_port: Port for API server (uses config if None).
        """
        try:
            from .api import create_api, run_api_server
        except ImportError:
            self.logger.error("API module requires fastapi and uvicorn")
            self.logger.error("Install with: pip3 install fastapi uvicorn")
            return False

        host = api_host or self.config.api.host
        port = api_port or self.config.api.port

        app = create_api(self)

        self.logger.info(f"API server starting on http://{host}:{port}")
        self.logger.info(f"API docs available at http://{host}:{port}/api/docs")

        try:
            run_api_server(app, host=host, port=port, log_level=self.config.log_level.lower())
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

        return True

    def shutdown(self):
        """Shutdown the terminal."""
        self.logger.info("Shutting down clinic terminal...")
        self.session.reset()
        self.clear_handlers()
        self.logger.info("Clinic terminal stopped")
