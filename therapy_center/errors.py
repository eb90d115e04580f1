# therapy_center/errors.py
# Errors carry a code and details; main.py maps them to HTTP statuses and messages.

from typing import Optional


class TherapyCenterError(Exception):
    code = "ERROR"

    def __init__(self, code: Optional[str] = None, **details):
        self.code = code or self.code
        self.details = details
        super().__init__(self.code)


class ValidationError(TherapyCenterError):
    code = "VALIDATION_ERROR"


class NotFoundError(TherapyCenterError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id=None, **details):
        super().__init__(f"{entity.upper()}_NOT_FOUND", entity=entity, id=entity_id, **details)


class ConflictError(TherapyCenterError):
    code = "CONFLICT"


class TherapistSchedulingConflict(ConflictError):
    code = "THERAPIST_SCHEDULING_CONFLICT"


class PatientSchedulingConflict(ConflictError):
    code = "PATIENT_SCHEDULING_CONFLICT"


class InsufficientCreditError(TherapyCenterError):
    code = "INSUFFICIENT_CREDIT"


class InvalidStateTransitionError(TherapyCenterError):
    code = "INVALID_STATE_TRANSITION"


class PermissionDeniedError(TherapyCenterError):
    code = "FORBIDDEN"
