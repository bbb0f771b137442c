#!/usr/bin/env python3
"""
Card Session State Machine

One interaction with one identity card:

    NO_CARD --load--> LOADED --stage_diagnosis--> PENDING --commit--> COMMITTED
       ^                                                                  |
       +------------------------------ reset ----------------------------+

reset() is accepted from any stage. commit() is the only transition that
mutates the chip and it is atomic: either the visit is appended (with any
eviction) and written through, or the chip is left exactly as it was.

Events (pypubsub):
    mysihat.session.stage     old_stage, new_stage
    mysihat.visit.committed   identity, record, evicted
"""

import logging
from typing import Callable, Optional

from pubsub import pub

from .codes import DIAGNOSIS
from .errors import IdentityNotFound, IllegalTransition, IncompleteVisit, InvalidCode
from .models import PatientChip, SessionStage
from .protocol import VisitCodec, VisitRecord, date_code


TOPIC_STAGE = "mysihat.session.stage"
TOPIC_VISIT_COMMITTED = "mysihat.visit.committed"

Lookup = Callable[[str], Optional[PatientChip]]
Writer = Callable[[PatientChip], None]


class CardSession:
    """
    Gates chip operations by interaction stage.

    Not thread-safe: callers serialise access to a session.
    """

    def __init__(
        self,
        lookup: Lookup,
        codec: VisitCodec = None,
        writer: Optional[Writer] = None,
        logger: logging.Logger = None,
    ):
        """
        Initialize a session.

        Args:
            lookup: Identity lookup returning a chip or None.
            codec: Visit codec (built-in dictionaries if not provided).
            writer: Optional write-through for committed chips.
            logger: Logger instance (creates one if not provided).
        """
        self.lookup = lookup
        self.codec = codec or VisitCodec()
        self.writer = writer
        self.logger = logger or logging.getLogger("CardSession")

        self.stage = SessionStage.NO_CARD
        self.chip: Optional[PatientChip] = None
        self.staged_diagnosis: Optional[str] = None
        self.last_record: Optional[VisitRecord] = None
        self.last_evicted: Optional[VisitRecord] = None

    @property
    def identity(self) -> Optional[str]:
        return self.chip.identity if self.chip else None

    def _set_stage(self, stage: SessionStage):
        """Update stage and publish the transition."""
        old_stage = self.stage
        self.stage = stage
        self.logger.info(f"Stage: {old_stage.value} -> {stage.value}")
        self._publish(TOPIC_STAGE, old_stage=old_stage, new_stage=stage)

    def _publish(self, topic: str, **kwargs):
        try:
            pub.sendMessage(topic, **kwargs)
        except Exception as e:
            self.logger.error(f"Event handler error on {topic}: {e}")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def load(self, identity: str) -> PatientChip:
        """
        Load a card by identity number.

        Raises:
            IllegalTransition: A card is already loaded.
            IdentityNotFound: The lookup yields nothing.
        """
        if self.stage != SessionStage.NO_CARD:
            raise IllegalTransition("load", self.stage)

        chip = self.lookup(identity)
        if chip is None:
            self.logger.warning(f"Identity not found: {identity}")
            raise IdentityNotFound(identity)

        self.chip = chip
        self.logger.info(f"Card loaded: {identity} ({len(chip.history)} visits)")
        self._set_stage(SessionStage.LOADED)
        return chip

    def stage_diagnosis(self, diagnosis_code: str):
        """
        Record the candidate diagnosis for the visit.

        May be called again while PENDING to replace the staged code.

        Raises:
            IllegalTransition: No card loaded, or visit already committed.
            InvalidCode: Code is not in the diagnosis dictionary.
        """
        if self.stage not in (SessionStage.LOADED, SessionStage.PENDING):
            raise IllegalTransition("stage diagnosis", self.stage)

        if not self.codec.codes.diagnoses.is_valid(diagnosis_code):
            raise InvalidCode(diagnosis_code, DIAGNOSIS)

        self.staged_diagnosis = diagnosis_code
        if self.stage != SessionStage.PENDING:
            self._set_stage(SessionStage.PENDING)

    def commit(self, medication_code: str, date: str = None) -> VisitRecord:
        """
        Encode the staged visit and append it to the chip.

        Args:
            medication_code: ATC code of the prescribed medication.
            date: Visit date as YYMMDD (today if not given).

        Returns:
            The committed record.

        Raises:
            IllegalTransition: Not in PENDING stage.
            IncompleteVisit: Diagnosis or medication missing.
            InvalidCode / InvalidDate: Codec validation failed.
        """
        if self.stage != SessionStage.PENDING:
            raise IllegalTransition("commit", self.stage)

        if not self.staged_diagnosis or not medication_code:
            raise IncompleteVisit("Both a diagnosis and a medication are required")

        if date is None:
            date = date_code()

        record = self.codec.build_record(date, self.staged_diagnosis, medication_code)

        snapshot = self.chip.history.snapshot()
        evicted = self.chip.history.append(record)
        if self.writer is not None:
            try:
                self.writer(self.chip)
            except Exception:
                self.chip.history.restore(snapshot)
                self.logger.error(f"Card write failed, visit rolled back for {self.chip.identity}")
                raise

        self.last_record = record
        self.last_evicted = evicted
        self.staged_diagnosis = None

        self.logger.info(
            f"Visit committed: {self.chip.identity} "
            f"{record.date}|{record.diagnosis_code}|{record.medication_code} "
            f"({record.encoded_size}B)"
        )
        if evicted is not None:
            self.logger.info(f"History full, evicted visit from {evicted.date}")

        self._set_stage(SessionStage.COMMITTED)
        self._publish(TOPIC_VISIT_COMMITTED, identity=self.chip.identity, record=record, evicted=evicted)
        return record

    def reset(self):
        """Discard the session and return to NO_CARD."""
        self.chip = None
        self.staged_diagnosis = None
        self.last_record = None
        self.last_evicted = None
        if self.stage != SessionStage.NO_CARD:
            self._set_stage(SessionStage.NO_CARD)
