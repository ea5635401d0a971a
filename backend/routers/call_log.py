from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from call_log_service import (
    CallLogService,
    InvalidCallStatusError,
    LockResult,
    TeamNotFoundError,
    serialize_call_log,
)
from database import get_db
from dependencies import get_call_log_service
from models import CallStatus
from schemas import CallerRequest, CallOutcomeEnum, CallStatusUpdateRequest

router = APIRouter()

_OUTCOME_VALUES = {outcome.value for outcome in CallOutcomeEnum}


def _require_caller(caller_name) -> str:
    caller = str(caller_name or "").strip()
    if not caller:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="callerName is required")
    return caller


def _lock_response(result: LockResult):
    body = {"success": result.success, "message": result.message}
    if result.call_log is not None:
        body["callLog"] = serialize_call_log(result.call_log)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=jsonable_encoder(body))
    return body


@router.get("/call-log/teams")
def get_teams_with_call_status(
    service: CallLogService = Depends(get_call_log_service),
    db: Session = Depends(get_db),
):
    teams = service.list_teams(db)
    return {"success": True, "count": len(teams), "teams": teams}


@router.get("/call-log/stats")
def get_call_stats(
    service: CallLogService = Depends(get_call_log_service),
    db: Session = Depends(get_db),
):
    return {"success": True, "stats": service.stats(db)}


@router.post("/call-log/teams/{team_id}/lock")
def lock_team(
    team_id: int,
    payload: CallerRequest,
    service: CallLogService = Depends(get_call_log_service),
    db: Session = Depends(get_db),
):
    caller = _require_caller(payload.caller_name)
    try:
        result = service.acquire(db, team_id, caller)
    except TeamNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    return _lock_response(result)


@router.post("/call-log/teams/{team_id}/status")
def update_call_status(
    team_id: int,
    payload: CallStatusUpdateRequest,
    service: CallLogService = Depends(get_call_log_service),
    db: Session = Depends(get_db),
):
    caller = _require_caller(payload.caller_name)
    status_value = str(payload.status or "").strip().upper()
    if status_value not in _OUTCOME_VALUES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid status. Must be: CALLED_WILL_VERIFY, CALLED_NOT_PICKED, or CALLED_REJECTED",
        )
    try:
        result = service.complete(db, team_id, CallStatus(status_value), caller, payload.notes)
    except TeamNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    except InvalidCallStatusError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return _lock_response(result)


@router.post("/call-log/teams/{team_id}/release")
def release_lock(
    team_id: int,
    payload: CallerRequest,
    service: CallLogService = Depends(get_call_log_service),
    db: Session = Depends(get_db),
):
    caller = _require_caller(payload.caller_name)
    return _lock_response(service.release(db, team_id, caller))
