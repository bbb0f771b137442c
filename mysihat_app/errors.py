#!/usr/bin/env python3
"""
Error Types for the MySihat Chip Storage Engine

All engine failures are reported synchronously to the caller. None of them
is fatal: the caller may retry with corrected input. A failed operation never
leaves a partially written chip or a changed session stage behind.
"""


class ChipError(Exception):
    """Base class for every chip engine failure."""


class IdentityNotFound(ChipError):
    """The identity key is absent from the card store."""

    def __init__(self, identity: str):
        super().__init__(f"Identity not found: {identity}")
        self.identity = identity


class InvalidCode(ChipError, ValueError):
    """A diagnosis or medication code is outside its closed dictionary."""

    def __init__(self, code: str, kind: str):
        super().__init__(f"Unknown {kind} code: {code!r}")
        self.code = code
        self.kind = kind


class InvalidDate(ChipError, ValueError):
    """A visit date is not exactly six ASCII digits (YYMMDD)."""

    def __init__(self, date: str):
        super().__init__(f"Invalid visit date: {date!r} (expected YYMMDD)")
        self.date = date


class MalformedPayload(ChipError, ValueError):
    """Encoded bytes cannot be parsed back into a record or card image."""


class IncompleteVisit(ChipError):
    """Commit attempted without a staged diagnosis or without a medication."""


class IllegalTransition(ChipError):
    """A card session operation was invoked from the wrong stage."""

    def __init__(self, operation: str, stage):
        super().__init__(f"Cannot {operation}: session is {stage.value}")
        self.operation = operation
        self.stage = stage
