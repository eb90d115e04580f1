# therapy_center/routers/therapists_routes.py

from datetime import date, time
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from sqlmodel import Session

from therapy_center.auth import get_current_user
from therapy_center.db import get_session
from therapy_center.deps import (
    AVAILABILITY_READ,
    AVAILABILITY_WRITE,
    PRICING_READ,
    PRICING_WRITE,
    SESSIONS_READ,
    RequestContext,
    require_capability,
    require_self_or_capability,
)
from therapy_center.repositories import Repositories
from therapy_center.routers.common import ok
from therapy_center.schemas import (
    ApiResponse,
    AvailabilityCreate,
    AvailabilityPublic,
    AvailabilityUpdate,
    DayOfWeek,
    PricingCreate,
    PricingPublic,
    PricingQuotePublic,
    PricingUpdate,
    RescheduleSlotPublic,
    SessionPublic,
    SlotPublic,
    SlotsResponse,
    UnavailabilityCreate,
    UnavailabilityPublic,
    UnavailabilityUpdate,
)
from therapy_center.services.availability import AvailabilityService
from therapy_center.services.pricing import PricingResolver, PricingService
from therapy_center.services.sessions import SessionService
from therapy_center.services.unavailability import UnavailabilityService

router = APIRouter(
    prefix="/therapists",
    tags=["therapists"],
)


# ---- availability ----

@router.get("/{therapist_id}/availability", response_model=ApiResponse[List[AvailabilityPublic]])
def list_availability(
    therapist_id: int,
    day_of_week: Optional[DayOfWeek] = None,
    therapy_type_id: Optional[int] = None,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, AVAILABILITY_READ)
    rows = AvailabilityService(session).list_windows(ctx.tenant_id, therapist_id, day_of_week, therapy_type_id)
    return ApiResponse(data=[AvailabilityPublic.model_validate(r) for r in rows])


@router.post("/{therapist_id}/availability", response_model=ApiResponse[AvailabilityPublic], status_code=201)
def create_availability(
    therapist_id: int,
    data: AvailabilityCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    row = AvailabilityService(session).create_window(ctx.tenant_id, therapist_id, data, actor_id=ctx.user_id)
    return ok(AvailabilityPublic, row)


@router.patch("/{therapist_id}/availability/{window_id}", response_model=ApiResponse[AvailabilityPublic])
def update_availability(
    therapist_id: int,
    window_id: int,
    data: AvailabilityUpdate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    row = AvailabilityService(session).update_window(
        ctx.tenant_id, therapist_id, window_id, data, actor_id=ctx.user_id
    )
    return ok(AvailabilityPublic, row)


@router.delete("/{therapist_id}/availability/{window_id}", status_code=204)
def delete_availability(
    therapist_id: int,
    window_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    AvailabilityService(session).delete_window(ctx.tenant_id, therapist_id, window_id, actor_id=ctx.user_id)
    return Response(status_code=204)


@router.get("/{therapist_id}/slots", response_model=ApiResponse[SlotsResponse])
def therapist_slots(
    therapist_id: int,
    therapy_type_id: int,
    date: date,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    duration, slots = SessionService(session).slots_for(ctx.tenant_id, therapist_id, therapy_type_id, date)
    return ApiResponse(data=SlotsResponse(
        therapist_id=therapist_id,
        therapy_type_id=therapy_type_id,
        date=date,
        session_duration=duration,
        slots=[
            SlotPublic(
                start_time=s.start_time,
                end_time=s.end_time,
                is_available=s.is_available,
                occupying_session_id=s.occupying_session.id if s.occupying_session else None,
            )
            for s in slots
        ],
    ))


# ---- unavailability ----

@router.get("/{therapist_id}/unavailability", response_model=ApiResponse[List[UnavailabilityPublic]])
def list_unavailability(
    therapist_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, AVAILABILITY_READ)
    rows = UnavailabilityService(session).list_periods(ctx.tenant_id, therapist_id, start_date, end_date)
    return ApiResponse(data=[UnavailabilityPublic.model_validate(r) for r in rows])


@router.get(
    "/{therapist_id}/unavailability/affected-sessions",
    response_model=ApiResponse[List[SessionPublic]],
)
def affected_sessions(
    therapist_id: int,
    start_date: date,
    end_date: date,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, AVAILABILITY_READ)
    rows = UnavailabilityService(session).affected_sessions(
        ctx.tenant_id, therapist_id, start_date, end_date, start_time, end_time
    )
    return ApiResponse(data=[SessionPublic.model_validate(r) for r in rows])


@router.post("/{therapist_id}/unavailability", response_model=ApiResponse[UnavailabilityPublic], status_code=201)
def create_unavailability(
    therapist_id: int,
    data: UnavailabilityCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    row = UnavailabilityService(session).create_period(ctx.tenant_id, therapist_id, data, actor_id=ctx.user_id)
    return ok(UnavailabilityPublic, row)


@router.patch("/{therapist_id}/unavailability/{period_id}", response_model=ApiResponse[UnavailabilityPublic])
def update_unavailability(
    therapist_id: int,
    period_id: int,
    data: UnavailabilityUpdate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    row = UnavailabilityService(session).update_period(
        ctx.tenant_id, therapist_id, period_id, data, actor_id=ctx.user_id
    )
    return ok(UnavailabilityPublic, row)


@router.delete("/{therapist_id}/unavailability/{period_id}", status_code=204)
def delete_unavailability(
    therapist_id: int,
    period_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_self_or_capability(ctx, therapist_id, AVAILABILITY_WRITE)
    UnavailabilityService(session).delete_period(ctx.tenant_id, therapist_id, period_id, actor_id=ctx.user_id)
    return Response(status_code=204)


@router.get("/{therapist_id}/reschedule-slots", response_model=ApiResponse[List[RescheduleSlotPublic]])
def reschedule_slots(
    therapist_id: int,
    therapy_type_id: int,
    start_date: date,
    days_ahead: int = 30,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, SESSIONS_READ)
    free = UnavailabilityService(session).reschedule_slots(
        ctx.tenant_id, therapist_id, therapy_type_id, start_date, days_ahead
    )
    return ApiResponse(data=[RescheduleSlotPublic(date=d, start_time=s, end_time=e) for d, s, e in free])


# ---- pricing ----

@router.get("/{therapist_id}/pricing", response_model=ApiResponse[List[PricingPublic]])
def list_pricing(
    therapist_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PRICING_READ)
    rows = PricingService(session).list_overrides(ctx.tenant_id, therapist_id)
    return ApiResponse(data=[PricingPublic.model_validate(r) for r in rows])


@router.get("/{therapist_id}/pricing/resolve", response_model=ApiResponse[PricingQuotePublic])
def resolve_pricing(
    therapist_id: int,
    therapy_type_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PRICING_READ)
    repos = Repositories.for_session(session)
    quote = PricingResolver(repos.pricing, repos.therapy_types).resolve_pricing(
        ctx.tenant_id, therapist_id, therapy_type_id
    )
    return ApiResponse(data=PricingQuotePublic(
        cost=quote.cost,
        duration=quote.duration,
        is_custom_pricing=quote.is_custom_pricing,
    ))


@router.post("/{therapist_id}/pricing", response_model=ApiResponse[PricingPublic], status_code=201)
def create_pricing(
    therapist_id: int,
    data: PricingCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PRICING_WRITE)
    row = PricingService(session).create_override(ctx.tenant_id, therapist_id, data, actor_id=ctx.user_id)
    return ok(PricingPublic, row)


@router.patch("/{therapist_id}/pricing/{pricing_id}", response_model=ApiResponse[PricingPublic])
def update_pricing(
    therapist_id: int,
    pricing_id: int,
    data: PricingUpdate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PRICING_WRITE)
    row = PricingService(session).update_override(
        ctx.tenant_id, therapist_id, pricing_id, data, actor_id=ctx.user_id
    )
    return ok(PricingPublic, row)


@router.delete("/{therapist_id}/pricing/{pricing_id}", status_code=204)
def delete_pricing(
    therapist_id: int,
    pricing_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PRICING_WRITE)
    PricingService(session).delete_override(ctx.tenant_id, therapist_id, pricing_id, actor_id=ctx.user_id)
    return Response(status_code=204)
