# therapy_center/routers/patients_routes.py

from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from therapy_center.audit import AuditEvent, log_audit_event, snapshot
from therapy_center.auth import get_current_user
from therapy_center.db import atomic, get_session
from therapy_center.deps import (
    BILLING_READ,
    BILLING_WRITE,
    PATIENTS_READ,
    PATIENTS_WRITE,
    RequestContext,
    require_capability,
)
from therapy_center.errors import NotFoundError
from therapy_center.models import Patient
from therapy_center.repositories import SqlPatientRepository
from therapy_center.routers.common import Pagination, ok, ok_page, pagination
from therapy_center.schemas import (
    ApiResponse,
    InvoicePublic,
    Page,
    PatientBalance,
    PatientCreate,
    PatientPublic,
    PaymentCreate,
    PaymentPublic,
)
from therapy_center.services.invoices import InvoiceService

router = APIRouter(
    prefix="/patients",
    tags=["patients"],
)


@router.post("", response_model=ApiResponse[PatientPublic], status_code=201)
def create_patient(
    data: PatientCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PATIENTS_WRITE)
    patient = Patient(tenant_id=ctx.tenant_id, **data.model_dump())
    with atomic(session):
        session.add(patient)
    session.refresh(patient)
    log_audit_event(AuditEvent(ctx.tenant_id, ctx.user_id, "CREATE", "patient", patient.id, after=snapshot(patient)))
    return ok(PatientPublic, patient)


@router.get("", response_model=ApiResponse[Page[PatientPublic]])
def list_patients(
    paging: Pagination = Depends(pagination),
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PATIENTS_READ)
    rows, total = SqlPatientRepository(session).list(ctx.tenant_id, offset=paging.offset, limit=paging.limit)
    return ok_page(PatientPublic, rows, total, paging)


@router.get("/{patient_id}", response_model=ApiResponse[PatientPublic])
def get_patient(
    patient_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, PATIENTS_READ)
    patient = SqlPatientRepository(session).get(ctx.tenant_id, patient_id)
    if patient is None:
        raise NotFoundError("patient", patient_id)
    return ok(PatientPublic, patient)


@router.get("/{patient_id}/balance", response_model=ApiResponse[PatientBalance])
def patient_balance(
    patient_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_READ)
    summary = InvoiceService(session).patient_balance(ctx.tenant_id, patient_id)
    return ApiResponse(data=PatientBalance(
        patient_id=summary.patient_id,
        credit_balance=summary.credit_balance,
        total_outstanding_dues=summary.total_outstanding_dues,
        uninvoiced_count=summary.uninvoiced_count,
        uninvoiced_total=summary.uninvoiced_total,
        net_payable=summary.net_payable,
    ))


@router.get("/{patient_id}/payments", response_model=ApiResponse[List[PaymentPublic]])
def list_payments(
    patient_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_READ)
    patients = SqlPatientRepository(session)
    if patients.get(ctx.tenant_id, patient_id) is None:
        raise NotFoundError("patient", patient_id)
    return ApiResponse(data=[PaymentPublic.model_validate(p) for p in patients.payments(ctx.tenant_id, patient_id)])


@router.post("/{patient_id}/payments", response_model=ApiResponse[PaymentPublic], status_code=201)
def record_payment(
    patient_id: int,
    data: PaymentCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_WRITE)
    _, payment = InvoiceService(session).record_payment(
        ctx.tenant_id,
        patient_id,
        data.amount,
        data.method,
        paid_on=data.paid_on,
        description=data.description,
        actor_id=ctx.user_id,
    )
    return ok(PaymentPublic, payment)


@router.get("/{patient_id}/invoices", response_model=ApiResponse[Page[InvoicePublic]])
def patient_invoices(
    patient_id: int,
    paging: Pagination = Depends(pagination),
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_READ)
    rows, total = InvoiceService(session).patient_invoices(
        ctx.tenant_id, patient_id, offset=paging.offset, limit=paging.limit
    )
    return ok_page(InvoicePublic, rows, total, paging)
