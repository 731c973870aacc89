"""
Reports router - compose, edit and save maintenance reports

A report is edited inside a server-side session (tree + wizard). The client
posts one edit at a time, walks the wizard with next/back, and saves from the
conclusion step. Sessions live in this process only and are single-editor.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional, Dict
import base64
import binascii
import logging
import os
import time
import uuid

from database import get_db
from schemas_reports import (
    ReportVariant, SaveMode, SessionCreate, ReportEdit, EditAction, EditTarget, PhotoAttach,
)
from report_session import ReportSession, start_new_report, start_edit_report
from report_errors import (
    ReportError, ValidationFailure, MinimumCardinalityViolation, WizardStateError,
    UnknownFieldError, RepositoryReadFailure, RepositoryWriteFailure,
)
from report_helpers import log_report_audit
from repository import Repository, SqlAlchemyRepository

logger = logging.getLogger(__name__)

router = APIRouter()

# session_id -> ReportSession
_sessions: Dict[str, ReportSession] = {}
# session_id -> time.time() of the last request that used it
_last_touched: Dict[str, float] = {}

SESSION_TTL_MINUTES = int(os.getenv("GASREPORT_SESSION_TTL_MINUTES", "120"))

AUDIT_ACTIONS = {
    SaveMode.CREATE_NEW: "CREATE",
    SaveMode.UPDATE_IN_PLACE: "UPDATE",
    SaveMode.DUPLICATE_AS_NEW: "DUPLICATE",
}

FIXED_TARGETS = {
    EditTarget.UNIT, EditTarget.BACKUP_POWER, EditTarget.GAS_DETECTOR,
    EditTarget.THRESHOLD, EditTarget.FLAME_DETECTOR,
}
PORTABLE_TARGETS = {EditTarget.PORTABLE, EditTarget.PORTABLE_GAS}


def get_repository() -> Repository:
    return SqlAlchemyRepository()


# ============================================================================
# HELPERS
# ============================================================================

def _register_session(session: ReportSession) -> str:
    cleanup_expired_sessions()
    session_id = uuid.uuid4().hex
    _sessions[session_id] = session
    _last_touched[session_id] = time.time()
    return session_id


def _drop_session(session_id: str):
    _sessions.pop(session_id, None)
    _last_touched.pop(session_id, None)


def cleanup_expired_sessions(max_age_minutes: int = SESSION_TTL_MINUTES) -> int:
    """Drop sessions untouched for more than max_age_minutes"""
    cutoff_time = time.time() - (max_age_minutes * 60)
    expired = [sid for sid, touched in _last_touched.items() if touched < cutoff_time]
    for session_id in expired:
        _drop_session(session_id)
    if expired:
        logger.info(f"Discarded {len(expired)} abandoned report session(s)")
    return len(expired)


def _get_session(session_id: str) -> ReportSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Report session not found")
    if _last_touched.get(session_id, 0) < time.time() - (SESSION_TTL_MINUTES * 60):
        _drop_session(session_id)
        raise HTTPException(status_code=404, detail="Report session expired")
    _last_touched[session_id] = time.time()
    return session


def _http_error(e: ReportError) -> HTTPException:
    """Map report errors to HTTP status codes"""
    if isinstance(e, ValidationFailure):
        return HTTPException(status_code=422, detail={
            "message": e.message, "missing_fields": e.missing_fields, "invalid_fields": e.invalid_fields,
        })
    if isinstance(e, (MinimumCardinalityViolation, WizardStateError)):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, UnknownFieldError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, RepositoryReadFailure):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, RepositoryWriteFailure):
        return HTTPException(status_code=502, detail=e.message)
    return HTTPException(status_code=400, detail=e.message)


def _session_response(session_id: str, session: ReportSession, **extra) -> dict:
    return {"session_id": session_id, **session.state(), **extra}


def _indices(edit: ReportEdit, count: int) -> list:
    if len(edit.indices) < count:
        raise IndexError(f"{edit.target.value} needs {count} index(es), got {len(edit.indices)}")
    return edit.indices[:count]


def apply_edit(session: ReportSession, edit: ReportEdit) -> Optional[int]:
    """
    Apply one edit to the session tree.
    Returns the index of the new item for `add`, else None.
    """
    tree = session.tree
    wizard = session.wizard
    action = edit.action
    target = edit.target
    patch = edit.patch

    if target in FIXED_TARGETS and session.variant != ReportVariant.FIXED:
        raise ValueError(f"{target.value} edits only apply to fixed reports")
    if target in PORTABLE_TARGETS and session.variant != ReportVariant.PORTABLE:
        raise ValueError(f"{target.value} edits only apply to portable reports")

    if target == EditTarget.INTERVENTION and action == EditAction.UPDATE:
        tree.update_intervention(patch)
        return None

    if target == EditTarget.CLIENT and action == EditAction.UPDATE:
        unknown = [key for key in patch if key not in ("client_id", "site_id")]
        if unknown:
            raise UnknownFieldError("client selection", unknown)
        if "client_id" in patch:
            tree.select_client(patch["client_id"])
        if "site_id" in patch:
            tree.select_site(patch["site_id"])
        return None

    # Units / portable detectors go through the wizard so the cursor follows
    if target in (EditTarget.UNIT, EditTarget.PORTABLE):
        update = tree.update_unit if target == EditTarget.UNIT else tree.update_portable_detector
        if action == EditAction.ADD:
            index = wizard.add_item()
            if patch:
                update(index, patch)
            return index
        if action == EditAction.REMOVE:
            wizard.remove_item(*_indices(edit, 1))
            return None
        if action == EditAction.UPDATE:
            update(*_indices(edit, 1), patch)
            return None

    if target == EditTarget.BACKUP_POWER:
        if action in (EditAction.ADD, EditAction.UPDATE):
            tree.set_backup_power(*_indices(edit, 1), patch)
            return None
        if action == EditAction.REMOVE:
            tree.clear_backup_power(*_indices(edit, 1))
            return None

    if target == EditTarget.GAS_DETECTOR:
        if action == EditAction.ADD:
            (unit_index,) = _indices(edit, 1)
            index = tree.add_gas_detector(unit_index)
            if patch:
                tree.update_gas_detector(unit_index, index, patch)
            return index
        if action == EditAction.REMOVE:
            tree.remove_gas_detector(*_indices(edit, 2))
            return None
        if action == EditAction.UPDATE:
            tree.update_gas_detector(*_indices(edit, 2), patch)
            return None
        if action == EditAction.RECALCULATE:
            tree.recalculate_coefficient(*_indices(edit, 2))
            return None

    if target == EditTarget.THRESHOLD:
        if action == EditAction.ADD:
            unit_index, detector_index = _indices(edit, 2)
            index = tree.add_threshold(unit_index, detector_index)
            if patch:
                tree.update_threshold(unit_index, detector_index, index, patch)
            return index
        if action == EditAction.REMOVE:
            tree.remove_threshold(*_indices(edit, 3))
            return None
        if action == EditAction.UPDATE:
            tree.update_threshold(*_indices(edit, 3), patch)
            return None

    if target == EditTarget.FLAME_DETECTOR:
        if action == EditAction.ADD:
            (unit_index,) = _indices(edit, 1)
            index = tree.add_flame_detector(unit_index)
            if patch:
                tree.update_flame_detector(unit_index, index, patch)
            return index
        if action == EditAction.REMOVE:
            tree.remove_flame_detector(*_indices(edit, 2))
            return None
        if action == EditAction.UPDATE:
            tree.update_flame_detector(*_indices(edit, 2), patch)
            return None

    if target == EditTarget.PORTABLE_GAS:
        if action == EditAction.ADD:
            (detector_index,) = _indices(edit, 1)
            index = tree.add_gas(detector_index)
            if patch:
                tree.update_gas(detector_index, index, patch)
            return index
        if action == EditAction.REMOVE:
            tree.remove_gas(*_indices(edit, 2))
            return None
        if action == EditAction.UPDATE:
            tree.update_gas(*_indices(edit, 2), patch)
            return None
        if action == EditAction.RECALCULATE:
            tree.recalculate_coefficient(*_indices(edit, 2))
            return None

    raise ValueError(f"Action '{action.value}' is not supported on {target.value}")


# ============================================================================
# SESSIONS
# ============================================================================

@router.post("/sessions")
async def create_session(data: SessionCreate, repository: Repository = Depends(get_repository)):
    """Start a new, empty report"""
    session = start_new_report(data.variant, repository)
    session_id = _register_session(session)
    return _session_response(session_id, session)


@router.post("/sessions/edit/{intervention_id}")
async def open_edit_session(
    intervention_id: int,
    variant: ReportVariant = ReportVariant.FIXED,
    repository: Repository = Depends(get_repository)
):
    """Load a saved report into a new session"""
    try:
        session = await start_edit_report(repository, variant, intervention_id)
    except ReportError as e:
        raise _http_error(e)
    session_id = _register_session(session)
    return _session_response(session_id, session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _session_response(session_id, _get_session(session_id))


@router.delete("/sessions/{session_id}")
async def discard_session(session_id: str):
    """Drop unsaved changes"""
    _get_session(session_id)
    _drop_session(session_id)
    return {"status": "ok", "session_id": session_id}


# ============================================================================
# EDITING + NAVIGATION
# ============================================================================

@router.post("/sessions/{session_id}/edits")
async def edit_session(session_id: str, edit: ReportEdit):
    session = _get_session(session_id)
    try:
        index = apply_edit(session, edit)
    except ReportError as e:
        raise _http_error(e)
    except (IndexError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session_id, session, index=index)


@router.post("/sessions/{session_id}/next")
async def next_step(session_id: str):
    session = _get_session(session_id)
    try:
        session.wizard.next()
    except ReportError as e:
        raise _http_error(e)
    return _session_response(session_id, session)


@router.post("/sessions/{session_id}/back")
async def previous_step(session_id: str):
    session = _get_session(session_id)
    session.wizard.back()
    return _session_response(session_id, session)


@router.post("/sessions/{session_id}/photos")
async def attach_photo(session_id: str, data: PhotoAttach):
    """Attach a photo; it is uploaded on the next save"""
    session = _get_session(session_id)
    try:
        content = base64.b64decode(data.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Photo content is not valid base64")
    if not content:
        raise HTTPException(status_code=400, detail="Photo content is empty")
    index = session.tree.add_photo(data.filename, content, data.category)
    return _session_response(session_id, session, index=index)


@router.delete("/sessions/{session_id}/photos/{index}")
async def remove_photo(session_id: str, index: int):
    session = _get_session(session_id)
    try:
        session.tree.remove_photo(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _session_response(session_id, session)


# ============================================================================
# SAVE
# ============================================================================

@router.post("/sessions/{session_id}/save")
async def save_session(
    session_id: str,
    mode: Optional[SaveMode] = None,
    db: Session = Depends(get_db)
):
    """
    Save the report. mode defaults to update_in_place for loaded reports and
    create_new otherwise. A successful save closes the session; reopen the
    saved report with /sessions/edit/{intervention_id} to keep editing.
    """
    session = _get_session(session_id)
    try:
        outcome = await session.save(mode)
    except ReportError as e:
        raise _http_error(e)

    report = session.tree.report
    log_report_audit(
        db,
        action=AUDIT_ACTIONS[outcome.mode],
        intervention_id=outcome.intervention_id,
        variant=session.variant.value,
        technician_name=report.technician,
        summary=f"{session.tree.repeated_count} {session.tree.repeated_name}(s), {len(report.photos)} photo(s)",
        fields_changed={"skipped_photos": outcome.skipped_photos} if outcome.skipped_photos else None,
    )
    response = {**outcome.model_dump(mode="json"), **_session_response(session_id, session), "closed": True}
    _drop_session(session_id)
    logger.info(f"Closed report session {session_id} after saving intervention {outcome.intervention_id}")
    return response
