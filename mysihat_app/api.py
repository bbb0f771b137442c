#!/usr/bin/env python3
"""
REST API for the MySihat Clinic Terminal

This module provides a FastAPI-based REST API over the clinic terminal. It is
designed to back the clinic web UI (card reader step, history table, storage
gauge, consultation form).

Endpoints:
    GET  /api/health                 - API health check
    GET  /api/status                 - Terminal status and statistics
    GET  /api/codes/diagnoses        - Diagnosis vocabulary (ICD-10)
    GET  /api/codes/medications      - Medication vocabulary (ATC)
    GET  /api/card                   - Loaded card (critical block)
    POST /api/card/load              - Read a card by identity number
    GET  /api/card/history           - Visit history (newest first)
    GET  /api/card/storage           - Chip storage usage
    POST /api/card/diagnosis         - Stage today's diagnosis
    POST /api/card/commit            - Write the visit to the chip
    POST /api/card/reset             - Next patient

Usage:
    from mysihat_app import ClinicTerminal, ClinicConfig
    from mysihat_app.api import create_api, run_api_server

    config = ClinicConfig.from_yaml("config.yaml")
    terminal = ClinicTerminal(config)

    app = create_api(terminal)
    run_api_server(app, host="0.0.0.0", port=8080)
"""

import logging
from datetime import datetime
from typing import List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
    import uvicorn
except ImportError:
    raise ImportError(
        "FastAPI, Pydantic and uvicorn are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from .codes import DIAGNOSIS, MEDICATION
from .errors import (
    ChipError,
    IdentityNotFound,
    IllegalTransition,
    IncompleteVisit,
    InvalidCode,
    InvalidDate,
)
from .models import SessionStage


# =============================================================================
# Constants
# =============================================================================

# Maximum visits to return per history request
MAX_HISTORY_ITEMS = 200


# =============================================================================
# Pydantic Models for API Responses
# =============================================================================

class CodeResponse(BaseModel):
    """A dictionary entry."""
    code: str = Field(..., description="ICD-10 or ATC code")
    name: str = Field(..., description="Human-readable name")


class ChronicCondition(BaseModel):
    """A chronic condition from the critical block."""
    code: str = Field(..., description="ICD-10 code")
    name: Optional[str] = Field(None, description="Resolved name")


class CardResponse(BaseModel):
    """Critical block of the loaded card."""
    identity: str = Field(..., description="Identity card number")
    name: str = Field(..., description="Patient name")
    blood_type: str = Field(..., description="Blood type")
    allergies: List[str] = Field(..., description="Known allergies")
    chronic: List[ChronicCondition] = Field(..., description="Chronic conditions")
    visit_count: int = Field(..., ge=0, description="Visits stored on the chip")
    max_visit_count: int = Field(..., ge=1, description="History ring bound")


class VisitResponse(BaseModel):
    """A visit record from the chip."""
    date: str = Field(..., description="Visit date (YYMMDD)")
    display_date: str = Field(..., description="Visit date (YY/MM/DD)")
    diagnosis_code: str = Field(..., description="ICD-10 code")
    diagnosis: Optional[str] = Field(None, description="Diagnosis name")
    medication_code: str = Field(..., description="ATC code")
    medication: Optional[str] = Field(None, description="Medication name")
    chip_data: str = Field(..., description="Encoded chip payload")
    encoded_size: int = Field(..., ge=0, description="Bytes used on the chip")


class StorageResponse(BaseModel):
    """Chip storage usage."""
    critical_bytes: int = Field(..., ge=0, description="Reserved critical block")
    history_bytes: int = Field(..., ge=0, description="Bytes used by visits")
    available_bytes: int = Field(..., description="Free bytes (negative if over budget)")
    available_kb: float = Field(..., description="Free kilobytes")
    percent_used: float = Field(..., description="Chip utilisation %")
    visit_count: int = Field(..., ge=0, description="Number of visits")
    over_budget: bool = Field(..., description="Byte budget exceeded")


class StatusResponse(BaseModel):
    """Terminal status."""
    stage: str = Field(..., description="Session stage")
    identity: Optional[str] = Field(None, description="Loaded card")
    staged_diagnosis: Optional[str] = Field(None, description="Staged diagnosis code")
    registered_cards: int = Field(..., ge=0, description="Cards in the store")
    cards_read: int = Field(..., ge=0, description="Successful card reads")
    visits_written: int = Field(..., ge=0, description="Visits committed")
    visits_evicted: int = Field(..., ge=0, description="Visits evicted from full rings")
    errors: int = Field(..., ge=0, description="Rejected operations")


class LoadRequest(BaseModel):
    """Request to read a card."""
    identity: str = Field(..., description="Identity card number")


class DiagnosisRequest(BaseModel):
    """Request to stage a diagnosis."""
    code: str = Field(..., description="ICD-10 code")


class CommitRequest(BaseModel):
    """Request to write the visit to the chip."""
    medication: str = Field("", description="ATC code")
    date: Optional[str] = Field(None, description="Visit date YYMMDD (default today)")


class StageResponse(BaseModel):
    """Session stage after an operation."""
    stage: str = Field(..., description="Session stage")
    message: str = Field(..., description="Status message")


class CommitResponse(BaseModel):
    """Result of a committed visit."""
    stage: str = Field(..., description="Session stage")
    visit: VisitResponse = Field(..., description="Written visit")
    evicted: Optional[VisitResponse] = Field(None, description="Visit evicted to make room")
    storage: StorageResponse = Field(..., description="Storage after the write")


class HealthResponse(BaseModel):
    """API health check response."""
    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="Current server time")


# =============================================================================
# API Factory
# =============================================================================

def error_status(error: ChipError) -> int:
    """HTTP status for an engine error."""
    if isinstance(error, IdentityNotFound):
        return 404
    if isinstance(error, IllegalTransition):
        return 409
    if isinstance(error, (InvalidCode, InvalidDate, IncompleteVisit)):
        return 400
    return 422


def create_api(terminal) -> FastAPI:
    """
    Create a FastAPI application with clinic terminal reference.

    Args:
        terminal: ClinicTerminal instance.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="MySihat Clinic Terminal API",
        description="REST API for reading and writing MySihat identity card chips",
        version="0.3.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Add CORS middleware for web access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store terminal reference
    app.state.terminal = terminal
    logger = logging.getLogger("API")

    # -------------------------------------------------------------------------
    # Helper Functions
    # -------------------------------------------------------------------------

    def get_terminal():
        """Get clinic terminal from app state."""
        return app.state.terminal

    def raise_http(error: ChipError):
        logger.info(f"Rejected: {error}")
        raise HTTPException(status_code=error_status(error), detail=str(error))

    def require_card(snapshot):
        """Pass through a locked query result; None means no card was loaded."""
        if snapshot is None:
            raise HTTPException(status_code=409, detail="No card loaded")
        return snapshot

    def visit_to_response(record) -> VisitResponse:
        return VisitResponse(**get_terminal().describe_visit(record))

    def storage_to_response(usage) -> StorageResponse:
        return StorageResponse(
            critical_bytes=usage.critical_bytes,
            history_bytes=usage.history_bytes,
            available_bytes=usage.available_bytes,
            available_kb=usage.available_kb,
            percent_used=usage.percent_used,
            visit_count=usage.visit_count,
            over_budget=usage.over_budget,
        )

    # -------------------------------------------------------------------------
    # Health / Status Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    def health_check():
        """Check API health."""
        return HealthResponse(status="healthy", timestamp=datetime.now().isoformat())

    @app.get("/api/status", response_model=StatusResponse, tags=["Terminal"])
    def get_status():
        """Get terminal status and statistics."""
        return StatusResponse(**get_terminal().get_stats())

    # -------------------------------------------------------------------------
    # Vocabulary Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/codes/diagnoses", response_model=List[CodeResponse], tags=["Codes"])
    def list_diagnoses():
        """Diagnosis codes in stable order."""
        return [CodeResponse(code=e.code, name=e.name) for e in get_terminal().get_codes(DIAGNOSIS)]

    @app.get("/api/codes/medications", response_model=List[CodeResponse], tags=["Codes"])
    def list_medications():
        """Medication codes in stable order."""
        return [CodeResponse(code=e.code, name=e.name) for e in get_terminal().get_codes(MEDICATION)]

    # -------------------------------------------------------------------------
    # Card Endpoints
    # -------------------------------------------------------------------------

    @app.post("/api/card/load", response_model=CardResponse, tags=["Card"])
    def load_card(request: LoadRequest):
        """
        Read a card by identity number.

        Fails with 404 for unknown identities and 409 if a card is already
        loaded (reset first).
        """
        t = get_terminal()
        try:
            chip = t.read_card(request.identity)
        except ChipError as e:
            raise_http(e)
        return CardResponse(**t.describe_card(chip))

    @app.get("/api/card", response_model=CardResponse, tags=["Card"])
    def get_card():
        """Critical block of the loaded card."""
        return CardResponse(**require_card(get_terminal().get_card_info()))

    @app.get("/api/card/history", response_model=List[VisitResponse], tags=["Card"])
    def get_history(
        newest_first: bool = Query(True, description="Newest visit first"),
        limit: int = Query(MAX_HISTORY_ITEMS, ge=1, le=MAX_HISTORY_ITEMS, description="Max visits"),
    ):
        """Visit history of the loaded card."""
        history = require_card(get_terminal().get_history(newest_first, limit))
        return [visit_to_response(v) for v in history]

    @app.get("/api/card/storage", response_model=StorageResponse, tags=["Card"])
    def get_storage():
        """Chip storage usage of the loaded card."""
        return storage_to_response(require_card(get_terminal().get_storage()))

    @app.post("/api/card/diagnosis", response_model=StageResponse, tags=["Visit"])
    def stage_diagnosis(request: DiagnosisRequest):
        """Stage today's diagnosis."""
        t = get_terminal()
        try:
            t.stage_diagnosis(request.code)
        except ChipError as e:
            raise_http(e)
        return StageResponse(stage=SessionStage.PENDING.value, message=f"Diagnosis {request.code} staged")

    @app.post("/api/card/commit", response_model=CommitResponse, tags=["Visit"])
    def commit_visit(request: CommitRequest):
        """Write the staged visit to the chip."""
        t = get_terminal()
        try:
            record, evicted, usage = t.write_visit(request.medication, request.date)
        except ChipError as e:
            raise_http(e)

        return CommitResponse(
            stage=SessionStage.COMMITTED.value,
            visit=visit_to_response(record),
            evicted=visit_to_response(evicted) if evicted else None,
            storage=storage_to_response(usage),
        )

    @app.post("/api/card/reset", response_model=StageResponse, tags=["Visit"])
    def reset_session():
        """Discard the session for the next patient."""
        t = get_terminal()
        t.next_patient()
        return StageResponse(stage=SessionStage.NO_CARD.value, message="Ready for next patient")

    return app


# =============================================================================
# Server Runner
# =============================================================================

def run_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
):
    """
    Serve a clinic API app with uvicorn (blocking until interrupted).

    Args:
        app: Application from create_api().
        host: Host to bind to.
        port: Port to bind to.
        log_level: uvicorn log level name.
    """
    logging.getLogger("API").info(f"Serving {app.title} on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=log_level)
