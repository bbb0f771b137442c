#!/usr/bin/env python3
"""
Chip Record Encoding

This module defines the byte formats written to the identity card chip.

Visit Record Format (ASCII):
    date|diagnosis|medication

    - date:        6 digits, YYMMDD
    - diagnosis:   ICD-10 code from the diagnosis dictionary
    - medication:  ATC code from the medication dictionary
    - separator:   '|' (one byte, two per record)

    Encoded size = len(date) + len(diagnosis) + len(medication) + 2
    Example: "251201|R50|N02BE01" -> 18 bytes

Card Image Format (binary, little-endian):
    [HEADER (12 bytes)] [RECORDS (variable)]

Header Format:
    Bytes 0-3:   Magic (uint32, 0x53494854 = 'SIHT')
    Bytes 4-5:   Record count (uint16)
    Bytes 6-7:   Max visit count (uint16)
    Bytes 8-9:   Critical block size (uint16, bytes)
    Bytes 10-11: Reserved

Records:
    Each record is prefixed with its length (uint8), oldest first.
"""

import re
import struct
from dataclasses import dataclass, field
from datetime import date as Date
from typing import List, Optional, Tuple

from .codes import DIAGNOSIS, FIELD_SEPARATOR, MEDICATION, CodeTables, default_code_tables
from .errors import InvalidCode, InvalidDate, MalformedPayload


# =============================================================================
# Constants
# =============================================================================

SEPARATOR_BYTE = FIELD_SEPARATOR.encode("ascii")

# Fields per record (date, diagnosis, medication)
FIELD_COUNT = 3

# Separator bytes per record
SEPARATOR_OVERHEAD = FIELD_COUNT - 1

DATE_LENGTH = 6

# Card image magic: ASCII 'SIHT'
CARD_MAGIC = 0x53494854

# One-byte length prefix limits a single record
MAX_RECORD_SIZE = 255

_DATE_PATTERN = re.compile(r"[0-9]{6}")


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class VisitRecord:
    """
    One encoded clinical encounter.

    Build instances with VisitCodec.build_record() so that encoded_size
    always matches the codec.
    """
    date: str
    diagnosis_code: str
    medication_code: str
    encoded_size: int

    @property
    def fields(self) -> Tuple[str, str, str]:
        return (self.date, self.diagnosis_code, self.medication_code)

    @property
    def display_date(self) -> str:
        """Date as YY/MM/DD."""
        return f"{self.date[0:2]}/{self.date[2:4]}/{self.date[4:6]}"


@dataclass
class CardImage:
    """Raw chip image: header plus length-prefixed visit payloads."""
    max_visits: int = 0
    critical_block_size: int = 0
    payloads: List[bytes] = field(default_factory=list)

    HEADER_FORMAT = "<IHHHH"
    HEADER_SIZE = 12

    def encode(self) -> bytes:
        """Encode card image to binary."""
        header = struct.pack(
            self.HEADER_FORMAT,
            CARD_MAGIC,
            len(self.payloads),
            self.max_visits,
            self.critical_block_size,
            0,  # Reserved
        )
        body = bytearray()
        for payload in self.payloads:
            if len(payload) > MAX_RECORD_SIZE:
                raise ValueError(f"Record too large: {len(payload)} > {MAX_RECORD_SIZE}")
            body.append(len(payload))
            body += payload
        return header + bytes(body)

    @classmethod
    def decode(cls, data: bytes) -> "CardImage":
        """
        Decode binary to card image.

        Raises:
            MalformedPayload: Bad magic, short header or truncated records.
        """
        if len(data) < cls.HEADER_SIZE:
            raise MalformedPayload(f"Card image too short: {len(data)} bytes")

        magic, count, max_visits, critical, _ = struct.unpack(
            cls.HEADER_FORMAT, data[: cls.HEADER_SIZE]
        )
        if magic != CARD_MAGIC:
            raise MalformedPayload(f"Not a MySihat card image (magic {magic:#010x})")

        payloads = []
        offset = cls.HEADER_SIZE
        for _ in range(count):
            if offset >= len(data):
                raise MalformedPayload("Card image truncated in record header")
            size = data[offset]
            offset += 1
            if offset + size > len(data):
                raise MalformedPayload("Card image truncated in record body")
            payloads.append(data[offset : offset + size])
            offset += size

        return cls(max_visits=max_visits, critical_block_size=critical, payloads=payloads)


# =============================================================================
# Helper Functions
# =============================================================================

def is_valid_date(value: str) -> bool:
    """Check for exactly six ASCII digits."""
    return isinstance(value, str) and _DATE_PATTERN.fullmatch(value) is not None


def date_code(day: Optional[Date] = None) -> str:
    """Format a date as YYMMDD (today if not given)."""
    return (day or Date.today()).strftime("%y%m%d")


def encoded_size(date: str, diagnosis_code: str, medication_code: str) -> int:
    """Exact number of bytes a visit occupies on the chip."""
    return len(date) + len(diagnosis_code) + len(medication_code) + SEPARATOR_OVERHEAD


# =============================================================================
# Visit Codec
# =============================================================================

class VisitCodec:
    """Encodes and decodes visit records against the code dictionaries."""

    def __init__(self, codes: Optional[CodeTables] = None):
        self.codes = codes or default_code_tables()

    def _validate(self, date: str, diagnosis_code: str, medication_code: str):
        if not is_valid_date(date):
            raise InvalidDate(date)
        if not self.codes.diagnoses.is_valid(diagnosis_code):
            raise InvalidCode(diagnosis_code, DIAGNOSIS)
        if not self.codes.medications.is_valid(medication_code):
            raise InvalidCode(medication_code, MEDICATION)

    def encode(self, date: str, diagnosis_code: str, medication_code: str) -> Tuple[bytes, int]:
        """
        Encode a visit.

        Returns:
            Tuple of (payload, encoded_size).

        Raises:
            InvalidDate: Date is not YYMMDD.
            InvalidCode: A code is outside its dictionary.
        """
        self._validate(date, diagnosis_code, medication_code)
        payload = SEPARATOR_BYTE.join(
            f.encode("ascii") for f in (date, diagnosis_code, medication_code)
        )
        return payload, encoded_size(date, diagnosis_code, medication_code)

    def decode(self, payload: bytes) -> Tuple[str, str, str]:
        """
        Decode a payload to (date, diagnosis_code, medication_code).

        Raises:
            MalformedPayload: Structure cannot be parsed.
            InvalidCode: A code is outside its dictionary.
        """
        try:
            text = bytes(payload).decode("ascii")
        except (TypeError, UnicodeDecodeError) as e:
            raise MalformedPayload(f"Payload is not ASCII: {e}") from e

        fields = text.split(FIELD_SEPARATOR)
        if len(fields) != FIELD_COUNT:
            raise MalformedPayload(
                f"Expected {FIELD_COUNT} fields, got {len(fields)}: {text!r}"
            )

        date, diagnosis_code, medication_code = fields
        if not is_valid_date(date):
            raise MalformedPayload(f"Bad date field: {date!r}")

        self._validate(date, diagnosis_code, medication_code)
        return date, diagnosis_code, medication_code

    def build_record(self, date: str, diagnosis_code: str, medication_code: str) -> VisitRecord:
        """Validate and build a VisitRecord with its codec-derived size."""
        _, size = self.encode(date, diagnosis_code, medication_code)
        return VisitRecord(
            date=date,
            diagnosis_code=diagnosis_code,
            medication_code=medication_code,
            encoded_size=size,
        )

    def record_from_payload(self, payload: bytes) -> VisitRecord:
        """Decode a stored payload into a VisitRecord."""
        return self.build_record(*self.decode(payload))

    def payload_for(self, record: VisitRecord) -> bytes:
        """Re-encode an existing record."""
        payload, _ = self.encode(*record.fields)
        return payload
