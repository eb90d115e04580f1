# therapy_center/routers/invoices_routes.py

from fastapi import APIRouter, Depends
from sqlmodel import Session

from therapy_center.auth import get_current_user
from therapy_center.db import get_session
from therapy_center.deps import BILLING_READ, BILLING_WRITE, RequestContext, require_capability
from therapy_center.schemas import (
    ApiResponse,
    InvoiceCreate,
    InvoicePaymentCreate,
    InvoicePublic,
    LineItemPublic,
)
from therapy_center.services.invoices import InvoiceService

router = APIRouter(
    prefix="/invoices",
    tags=["invoices"],
)


def _invoice_out(invoice, lines) -> ApiResponse:
    out = InvoicePublic.model_validate(invoice)
    out.line_items = [LineItemPublic.model_validate(line) for line in lines]
    return ApiResponse(data=out)


@router.post("", response_model=ApiResponse[InvoicePublic], status_code=201)
def create_invoice(
    data: InvoiceCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_WRITE)
    invoice, lines = InvoiceService(session).create_invoice(
        ctx.tenant_id,
        data.patient_id,
        data.session_ids,
        actor_id=ctx.user_id,
        notes=data.notes,
    )
    return _invoice_out(invoice, lines)


@router.get("/{invoice_id}", response_model=ApiResponse[InvoicePublic])
def get_invoice(
    invoice_id: int,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_READ)
    invoice, lines = InvoiceService(session).get_invoice(ctx.tenant_id, invoice_id)
    return _invoice_out(invoice, lines)


@router.post("/{invoice_id}/payments", response_model=ApiResponse[InvoicePublic])
def confirm_payment(
    invoice_id: int,
    data: InvoicePaymentCreate,
    session: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_current_user),
):
    require_capability(ctx, BILLING_WRITE)
    service = InvoiceService(session)
    service.confirm_payment(
        ctx.tenant_id,
        invoice_id,
        data.paid_amount,
        use_credit_amount=data.use_credit_amount,
        method=data.method,
        idempotency_key=data.idempotency_key,
        actor_id=ctx.user_id,
    )
    invoice, lines = service.get_invoice(ctx.tenant_id, invoice_id)
    return _invoice_out(invoice, lines)
