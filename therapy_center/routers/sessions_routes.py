# therapy_center/routers/sessions_routes.py

from datetime import date, time
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from therapy_center.auth import get_current_user
from therapy_center.db import get_session
from therapy_center.deps import (
    RequestContext,
    SESSIONS_CANCEL,
    SESSIONS_READ,
    SESSIONS_WRITE,
    require_capability,
)
from therapy_center.routers.common import Pagination, ok, ok_page, pagination
from therapy_center.schemas import (
    ApiResponse,
    ConflictCheckResponse,
    Page,
    SessionCancel,
    SessionCreate,
    SessionPublic,
    SessionStatus,
    SessionUpdate,
)
from therapy_center.services.sessions import SessionService

router = APIRouter(
    prefix="/sessions",
    tags=["sessions"],
)


@router.get("", response_model=ApiResponse[Page[SessionPublic]])
def list_sessions(
    patient_id: Optional[int] = None,
    therapist_id: Optional[int] = None,
    therapy_type_id: Optional[int] = None,
    status: Optional[SessionStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    paging: Pagination = Depends(pagination),
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    rows, total = SessionService(session).list_sessions(
        ctx.tenant_id,
        offset=paging.offset,
        limit=paging.limit,
        patient_id=patient_id,
        therapist_id=therapist_id,
        therapy_type_id=therapy_type_id,
        status=status.value if status else None,
        start_date=start_date,
        end_date=end_date,
    )
    return ok_page(SessionPublic, rows, total, paging)


@router.get("/calendar", response_model=ApiResponse[List[SessionPublic]])
def calendar(
    start_date: date,
    end_date: date,
    therapist_id: Optional[int] = None,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    rows = SessionService(session).calendar(ctx.tenant_id, start_date, end_date, therapist_id)
    return ApiResponse(data=[SessionPublic.model_validate(r) for r in rows])


@router.get("/conflicts", response_model=ApiResponse[ConflictCheckResponse])
def check_conflicts(
    therapist_id: int,
    patient_id: int,
    on_date: date,
    start_time: time,
    end_time: time,
    exclude_session_id: Optional[int] = None,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    result = SessionService(session).check_conflict(
        ctx.tenant_id, therapist_id, patient_id, on_date, start_time, end_time, exclude_session_id
    )
    return ApiResponse(data=ConflictCheckResponse(
        therapist_conflict=result.therapist_conflict,
        patient_conflict=result.patient_conflict,
    ))


@router.get("/{session_id}", response_model=ApiResponse[SessionPublic])
def get_session_by_id(
    session_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    return ok(SessionPublic, SessionService(session).get_session(ctx.tenant_id, session_id))


@router.post("", response_model=ApiResponse[SessionPublic], status_code=201)
def create_session(
    data: SessionCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_WRITE)
    row = SessionService(session).create_session(ctx.tenant_id, data, actor_id=ctx.user_id)
    return ok(SessionPublic, row)


@router.patch("/{session_id}", response_model=ApiResponse[SessionPublic])
def update_session(
    session_id: int,
    data: SessionUpdate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_WRITE)
    row = SessionService(session).update_session(ctx.tenant_id, session_id, data, actor_id=ctx.user_id)
    return ok(SessionPublic, row)


@router.patch("/{session_id}/cancel", response_model=ApiResponse[SessionPublic])
def cancel_session(
    session_id: int,
    data: SessionCancel,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_CANCEL)
    row, _ = SessionService(session).cancel_session(
        ctx.tenant_id, session_id, data.cancel_reason, actor_id=ctx.user_id
    )
    return ok(SessionPublic, row)
