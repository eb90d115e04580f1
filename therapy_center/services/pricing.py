# therapy_center/services/pricing.py

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..audit import AuditEvent, AuditSink, log_audit_event, snapshot
from ..core import money
from ..db import atomic
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import TherapistPricing
from ..repositories import PricingRepository, Repositories, TherapyTypeRepository
from ..schemas import PricingCreate, PricingUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingQuote:
    cost: Decimal
    duration: int
    is_custom_pricing: bool


class PricingResolver:
    """Therapist-specific override if active, otherwise the therapy type's defaults."""

    def __init__(self, pricing: PricingRepository, therapy_types: TherapyTypeRepository):
        self.pricing = pricing
        self.therapy_types = therapy_types

    def resolve_pricing(self, tenant_id: str, therapist_id: int, therapy_type_id: int) -> PricingQuote:
        override = self.pricing.get_override(tenant_id, therapist_id, therapy_type_id)
        if override is not None and override.active:
            return PricingQuote(
                cost=money(override.session_cost),
                duration=override.session_duration,
                is_custom_pricing=True,
            )

        therapy_type = self.therapy_types.get(tenant_id, therapy_type_id)
        if therapy_type is None:
            raise NotFoundError("therapy_type", therapy_type_id)

        return PricingQuote(
            cost=money(therapy_type.default_cost),
            duration=therapy_type.default_duration,
            is_custom_pricing=False,
        )


def _validate_pricing(cost: Optional[Decimal], duration: Optional[int]):
    if cost is not None and cost <= 0:
        raise ValidationError("INVALID_PRICING", field="session_cost", value=str(cost))
    if duration is not None and duration <= 0:
        raise ValidationError("INVALID_PRICING", field="session_duration", value=duration)


class PricingService:
    def __init__(self, db: Session, audit: AuditSink = log_audit_event):
        self.db = db
        self.repos = Repositories.for_session(db)
        self.audit = audit

    def list_overrides(self, tenant_id: str, therapist_id: int) -> List[TherapistPricing]:
        self._require_therapist(tenant_id, therapist_id)
        return self.repos.pricing.list_for_therapist(tenant_id, therapist_id)

    def create_override(
        self, tenant_id: str, therapist_id: int, data: PricingCreate, actor_id: Optional[int] = None
    ) -> TherapistPricing:
        _validate_pricing(data.session_cost, data.session_duration)
        self._require_therapist(tenant_id, therapist_id)
        if self.repos.therapy_types.get(tenant_id, data.therapy_type_id) is None:
            raise NotFoundError("therapy_type", data.therapy_type_id)

        if self.repos.pricing.find_pair(tenant_id, therapist_id, data.therapy_type_id) is not None:
            raise ConflictError(
                "PRICING_ALREADY_EXISTS",
                therapist_id=therapist_id,
                therapy_type_id=data.therapy_type_id,
            )

        row = TherapistPricing(
            tenant_id=tenant_id,
            therapist_id=therapist_id,
            therapy_type_id=data.therapy_type_id,
            session_cost=money(data.session_cost),
            session_duration=data.session_duration,
            active=True,
        )
        try:
            with atomic(self.db):
                self.repos.pricing.add(row)
        except IntegrityError:
            raise ConflictError(
                "PRICING_ALREADY_EXISTS",
                therapist_id=therapist_id,
                therapy_type_id=data.therapy_type_id,
            )
        self.db.refresh(row)

        self.audit(AuditEvent(tenant_id, actor_id, "CREATE", "therapist_pricing", row.id, after=snapshot(row)))
        return row

    def update_override(
        self,
        tenant_id: str,
        therapist_id: int,
        pricing_id: int,
        data: PricingUpdate,
        actor_id: Optional[int] = None,
    ) -> TherapistPricing:
        _validate_pricing(data.session_cost, data.session_duration)
        row = self._get(tenant_id, therapist_id, pricing_id)
        before = snapshot(row)

        with atomic(self.db):
            if data.session_cost is not None:
                row.session_cost = money(data.session_cost)
            if data.session_duration is not None:
                row.session_duration = data.session_duration
            if data.active is not None:
                row.active = data.active
            self.repos.pricing.add(row)
        self.db.refresh(row)

        self.audit(AuditEvent(tenant_id, actor_id, "UPDATE", "therapist_pricing", row.id,
                              before=before, after=snapshot(row)))
        return row

    def delete_override(
        self, tenant_id: str, therapist_id: int, pricing_id: int, actor_id: Optional[int] = None
    ) -> None:
        row = self._get(tenant_id, therapist_id, pricing_id)
        before = snapshot(row)
        with atomic(self.db):
            self.repos.pricing.delete(row)
        self.audit(AuditEvent(tenant_id, actor_id, "DELETE", "therapist_pricing", pricing_id, before=before))

    def _get(self, tenant_id, therapist_id, pricing_id) -> TherapistPricing:
        row = self.repos.pricing.get(tenant_id, pricing_id)
        if row is None or row.therapist_id != therapist_id:
            raise NotFoundError("pricing", pricing_id)
        return row

    def _require_therapist(self, tenant_id, therapist_id):
        therapist = self.repos.therapists.get_therapist(tenant_id, therapist_id)
        if therapist is None:
            raise NotFoundError("therapist", therapist_id)
        return therapist
