# therapy_center/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import init_db
from .errors import (
    ConflictError,
    InsufficientCreditError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TherapyCenterError,
    ValidationError,
)
from .routers.invoices_routes import router as invoices_router
from .routers.patients_routes import router as patients_router
from .routers.sessions_routes import router as sessions_router
from .routers.therapists_routes import router as therapists_router
from .schemas import ApiError, ApiResponse

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# first match wins, so subclasses go before their parents
STATUS_BY_ERROR = (
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateTransitionError, 409),
    (InsufficientCreditError, 400),
    (ValidationError, 400),
)

ERROR_MESSAGES = {
    "VALIDATION_ERROR": "Request validation failed",
    "FORBIDDEN": "You do not have permission to perform this action",
    "THERAPIST_SCHEDULING_CONFLICT": "Therapist already has a session at this time",
    "PATIENT_SCHEDULING_CONFLICT": "Patient already has a session at this time",
    "THERAPIST_NOT_AVAILABLE": "Therapist is not available at this time",
    "INSUFFICIENT_CREDIT": "Patient does not have enough credit",
    "INVALID_STATE_TRANSITION": "Session status cannot change this way",
    "USE_CANCEL_ENDPOINT": "Use the cancel endpoint to cancel a session",
    "INVALID_SESSION_DURATION": "Session duration must be positive",
    "INVALID_TIME_RANGE": "End time must be after start time on the same day",
    "INVALID_DATE_RANGE": "End date must not be before start date",
    "INVALID_PRICING": "Session cost and duration must be positive",
    "PRICING_ALREADY_EXISTS": "Pricing for this therapist and therapy type already exists",
    "AVAILABILITY_OVERLAP": "Availability window overlaps an existing window",
    "UNAVAILABILITY_AFFECTS_SESSIONS": "Scheduled sessions fall inside this period, reschedule them first",
    "NO_SESSIONS_SELECTED": "Select at least one session",
    "DUPLICATE_SESSIONS": "A session was selected more than once",
    "SESSION_NOT_BILLABLE": "Only scheduled, completed or no-show sessions can be invoiced",
    "SESSION_ALREADY_INVOICED": "Session is already on an invoice",
    "INVOICE_NUMBER_UNAVAILABLE": "Could not allocate an invoice number, try again",
    "INVOICE_VOID": "Invoice is void",
    "INVOICE_ALREADY_PAID": "Invoice is already paid",
    "NEGATIVE_AMOUNT": "Amounts must not be negative",
    "EMPTY_PAYMENT": "Payment must be greater than zero",
    "OVERPAYMENT": "Payment exceeds the outstanding amount",
    "INVALID_AMOUNT": "Amount must be greater than zero",
}


def status_for(exc: TherapyCenterError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def message_for(exc: TherapyCenterError) -> str:
    if exc.code in ERROR_MESSAGES:
        return ERROR_MESSAGES[exc.code]
    if isinstance(exc, NotFoundError):
        return f"{exc.details.get('entity', 'resource').replace('_', ' ').capitalize()} not found"
    return "Unexpected error"


def error_response(status_code: int, code: str, message: str, details: dict = None) -> JSONResponse:
    body = ApiResponse(success=False, error=ApiError(code=code, message=message, details=details or {}))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database tables ready")
    yield


app = FastAPI(title="Therapy Center API", lifespan=lifespan)


@app.exception_handler(TherapyCenterError)
async def therapy_center_error_handler(request: Request, exc: TherapyCenterError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.details}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.details}")
    return error_response(status, exc.code, message_for(exc), exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return error_response(
        400, "VALIDATION_ERROR", ERROR_MESSAGES["VALIDATION_ERROR"], {"errors": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = "UNAUTHORIZED" if exc.status_code == 401 else "HTTP_ERROR"
    response = error_response(exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(sessions_router)
app.include_router(therapists_router)
app.include_router(patients_router)
app.include_router(invoices_router)
