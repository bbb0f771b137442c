#!/usr/bin/env python3
"""
Medical Code Dictionaries

Closed vocabularies used to encode visits on the chip:
    - Diagnosis codes (ICD-10, simplified)
    - Medication codes (ATC, simplified)

Both dictionaries are built once at process start and shared read-only by
every component that validates codes. Enumeration order is the insertion
order of the source table, so selection lists render identically across runs.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import yaml


# =============================================================================
# Constants
# =============================================================================

# Field separator of the visit wire format; codes must never contain it
FIELD_SEPARATOR = "|"

DIAGNOSIS = "diagnosis"
MEDICATION = "medication"

# Built-in ICD-10 subset
ICD10_CODES = {
    "R50": "Fever",
    "E11": "Type 2 Diabetes Mellitus",
    "I10": "Essential Hypertension",
    "J06.9": "Upper Respiratory Infection",
    "M79.3": "Myalgia",
    "K21.9": "GERD",
    "E78.5": "Hyperlipidemia",
    "R51": "Headache",
    "J00": "Common Cold",
}

# Built-in ATC subset
ATC_CODES = {
    "N02BE01": "Paracetamol",
    "A10BA02": "Metformin",
    "C09AA02": "Enalapril",
    "J01CA04": "Amoxicillin",
    "A02BC01": "Omeprazole",
    "C10AA01": "Simvastatin",
    "R06AE07": "Cetirizine",
    "N02BA01": "Aspirin",
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class CodeEntry:
    """A single code and its human-readable name."""
    code: str
    name: str


class CodeDictionary:
    """
    Immutable code-to-name mapping for one vocabulary.

    No mutation operations are exposed.
    """

    def __init__(self, kind: str, entries: Mapping[str, str]):
        """
        Build a dictionary.

        Args:
            kind: Vocabulary name ("diagnosis" or "medication").
            entries: Ordered mapping of code -> name.

        Raises:
            ValueError: If a code is empty or contains the field separator.
        """
        table: Dict[str, str] = {}
        for code, name in entries.items():
            code = str(code)
            if not code or FIELD_SEPARATOR in code:
                raise ValueError(f"Invalid {kind} code in dictionary: {code!r}")
            if not code.isascii():
                raise ValueError(f"{kind} code must be ASCII: {code!r}")
            table[code] = str(name)

        self.kind = kind
        self._table = MappingProxyType(table)
        self._entries = tuple(CodeEntry(code, name) for code, name in table.items())

    def resolve(self, code: str) -> Optional[str]:
        """Return the name for a code, or None if the code is unknown."""
        return self._table.get(code)

    def is_valid(self, code: str) -> bool:
        """Check whether a code belongs to this dictionary."""
        return code in self._table

    def all_codes(self) -> Tuple[CodeEntry, ...]:
        """All entries in stable enumeration order."""
        return self._entries

    def __contains__(self, code: object) -> bool:
        return code in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"CodeDictionary({self.kind!r}, {len(self)} codes)"


@dataclass(frozen=True)
class CodeTables:
    """The pair of disjoint vocabularies shared by the engine."""
    diagnoses: CodeDictionary
    medications: CodeDictionary

    def __post_init__(self):
        overlap = set(self.diagnoses._table) & set(self.medications._table)
        if overlap:
            raise ValueError(f"Codes present in both dictionaries: {sorted(overlap)}")

    @classmethod
    def from_mappings(cls, diagnoses: Mapping[str, str], medications: Mapping[str, str]) -> "CodeTables":
        """Build both dictionaries from plain mappings."""
        return cls(
            diagnoses=CodeDictionary(DIAGNOSIS, diagnoses),
            medications=CodeDictionary(MEDICATION, medications),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "CodeTables":
        """
        Load a vocabulary file.

        Expected layout:
            diagnoses:
              R50: Fever
            medications:
              N02BE01: Paracetamol
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_mappings(
            diagnoses=data.get("diagnoses", {}),
            medications=data.get("medications", {}),
        )


_default_tables: Optional[CodeTables] = None


def default_code_tables() -> CodeTables:
    """Process-wide built-in tables (constructed on first use)."""
    global _default_tables
    if _default_tables is None:
        _default_tables = CodeTables.from_mappings(ICD10_CODES, ATC_CODES)
    return _default_tables
