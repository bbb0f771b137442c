#!/usr/bin/env python3
"""
Card Reader for the MySihat Clinic Terminal

This module handles card I/O:
- Reading a card by identity number (simulated chip read latency)
- Writing a committed chip back to the card store
- Dumping a chip to a raw card image

Latency only models the physical reader; it has no bearing on the engine's
results and is set to zero in tests.
"""

import logging
import time
from typing import Optional

from .errors import IdentityNotFound
from .models import ClinicConfig, PatientChip
from .protocol import CardImage
from .storage import ChipStore


class CardReader:
    """
    Simulated smart card reader backed by a ChipStore.

    read() and write() are used by the card session as its identity lookup
    and write-through.
    """

    def __init__(self, store: ChipStore, config: ClinicConfig = None, logger: logging.Logger = None):
        """
        Initialize card reader.

        Args:
            store: Card store holding persisted chips.
            config: Clinic configuration (reader delays).
            logger: Logger instance (creates one if not provided).
        """
        self.store = store
        self.config = config or ClinicConfig()
        self.logger = logger or logging.getLogger("CardReader")
        self.reads = 0
        self.writes = 0

    def _wait(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)

    def read(self, identity: str) -> Optional[PatientChip]:
        """
        Read a card.

        Returns:
            The chip, or None if the identity is unknown.
        """
        identity = identity.strip()
        self.logger.info(f"Reading card {identity}...")
        self._wait(self.config.read_delay)

        chip = self.store.lookup(identity)
        self.reads += 1

        if chip is None:
            self.logger.warning(f"No card data for {identity}")
        return chip

    def write(self, chip: PatientChip):
        """Write a chip back to the card."""
        self.logger.info(f"Writing card {chip.identity}...")
        self._wait(self.config.write_delay)

        self.store.save(chip)
        self.writes += 1

    def dump_image(self, chip: PatientChip) -> bytes:
        """Encode a chip as a raw card image."""
        image = CardImage(
            max_visits=chip.max_visit_count,
            critical_block_size=chip.critical_block_size,
            payloads=[self.store.codec.payload_for(r) for r in chip.history],
        )
        data = image.encode()
        self.logger.info(f"Card image for {chip.identity}: {len(data)} bytes, {len(image.payloads)} records")
        return data

    def load_image(self, identity: str, data: bytes) -> PatientChip:
        """
        Restore the visit history of a registered card from a raw image.

        The critical block and chip geometry come from the store; only the
        visit history is taken from the image.

        Raises:
            MalformedPayload: Image cannot be decoded.
            IdentityNotFound: No card registered for identity.
        """
        image = CardImage.decode(data)
        chip = self.store.lookup(identity)
        if chip is None:
            raise IdentityNotFound(identity)

        if image.max_visits != chip.max_visit_count:
            self.logger.warning(
                f"Image bound {image.max_visits} differs from chip bound {chip.max_visit_count}"
            )

        records = [self.store.codec.record_from_payload(p) for p in image.payloads]
        restored = PatientChip.create(
            identity,
            chip.profile,
            records,
            max_visits=chip.max_visit_count,
            critical_block_size=chip.critical_block_size,
            total_capacity=chip.total_capacity,
        )
        self.write(restored)
        return restored
