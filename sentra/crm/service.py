from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sentra import events
from sentra.core.cache import get_read_cache
from sentra.core.pagination import MessageResponse, page_meta, page_offset
from sentra.core.security import hash_password
from sentra.crm.models import Lead, LeadActivity
from sentra.crm.repository import LeadRepository
from sentra.crm.schemas import (
    LeadActivityRead,
    LeadConvertRequest,
    LeadCreate,
    LeadDetailRead,
    LeadPage,
    LeadRead,
    LeadUpdate,
)
from sentra.crm.transitions import CLOSED, INITIAL_STATUS, InvalidTransitionError, ensure_transition
from sentra.platform.security.context import AuthContext
from sentra.tenancy.models import Client, User
from sentra.tenancy.repository import BrandRepository

logger = logging.getLogger("sentra.crm.leads")

CACHE_ENTITY = "leads"

ACTIVITY_CREATED = "CREATED"
ACTIVITY_STATUS_CHANGE = "STATUS_CHANGE"
ACTIVITY_ASSIGNMENT_CHANGE = "ASSIGNMENT_CHANGE"
ACTIVITY_NOTE = "NOTE"
ACTIVITY_CONVERSION = "CONVERSION"


def _id_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


@dataclass(slots=True)
class LeadService:
    lead_repository: LeadRepository = LeadRepository()
    brand_repository: BrandRepository = BrandRepository()

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        self.brand_repository.get_reference(session, ctx, dto.brand_id)
        if dto.assigned_to_id is not None:
            self._get_assignee(session, ctx, dto.assigned_to_id)

        lead = Lead(
            title=dto.title,
            status=INITIAL_STATUS,
            source=dto.source,
            data=dto.data,
            brand_id=dto.brand_id,
            organization_id=ctx.organization_id,
            assigned_to_id=dto.assigned_to_id,
        )
        session.add(lead)
        session.flush()
        self._append_activity(session, lead, ctx, ACTIVITY_CREATED, {"title": lead.title})
        session.commit()
        session.refresh(lead)

        self._invalidate(ctx)
        logger.info("lead.created", extra={"lead_id": str(lead.id), "organization_id": str(ctx.organization_id)})
        self._publish("lead.created", ctx, {"lead_id": str(lead.id), "status": lead.status})
        return LeadRead.model_validate(lead)

    def list_leads(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        page: int = 1,
        limit: int = 20,
    ) -> LeadPage:
        query = {"op": "list", "filters": filters, "page": page, "limit": limit}
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            query,
            lambda: self._load_page(session, ctx, filters, page, limit),
        )

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadDetailRead:
        query = {"op": "get", "id": str(lead_id)}
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            query,
            lambda: self._load_detail(session, ctx, lead_id),
        )

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        payload = dto.model_dump(exclude_unset=True)
        if not payload:
            return LeadRead.model_validate(lead)

        for field_name, value in payload.items():
            setattr(lead, field_name, value)
        session.add(lead)
        session.commit()
        session.refresh(lead)

        self._invalidate(ctx)
        self._publish("lead.updated", ctx, {"lead_id": str(lead.id), "fields": sorted(payload)})
        return LeadRead.model_validate(lead)

    def remove_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> MessageResponse:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        session.execute(delete(LeadActivity).where(LeadActivity.lead_id == lead.id))
        session.delete(lead)
        session.commit()

        self._invalidate(ctx)
        logger.info("lead.deleted", extra={"lead_id": str(lead_id), "organization_id": str(ctx.organization_id)})
        self._publish("lead.deleted", ctx, {"lead_id": str(lead_id)})
        return MessageResponse(message="Lead deleted successfully")

    def change_status(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, target_status: str) -> LeadRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        previous_status = lead.status
        try:
            ensure_transition(previous_status, target_status)
        except InvalidTransitionError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

        lead.status = target_status
        session.add(lead)
        self._append_activity(session, lead, ctx, ACTIVITY_STATUS_CHANGE, {"from": previous_status, "to": target_status})
        session.commit()
        session.refresh(lead)

        self._invalidate(ctx)
        logger.info(
            "lead.status_changed",
            extra={"lead_id": str(lead.id), "status": target_status, "organization_id": str(ctx.organization_id)},
        )
        self._publish(
            "lead.status_changed",
            ctx,
            {"lead_id": str(lead.id), "from": previous_status, "to": target_status},
        )
        return LeadRead.model_validate(lead)

    def assign(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, assignee_id: uuid.UUID) -> LeadRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        try:
            self._get_assignee(session, ctx, assignee_id)
        except HTTPException:
            session.rollback()
            raise

        previous_assignee = lead.assigned_to_id
        lead.assigned_to_id = assignee_id
        session.add(lead)
        self._append_activity(
            session,
            lead,
            ctx,
            ACTIVITY_ASSIGNMENT_CHANGE,
            {"from": _id_or_none(previous_assignee), "to": str(assignee_id)},
        )
        session.commit()
        session.refresh(lead)

        self._invalidate(ctx)
        self._publish(
            "lead.assigned",
            ctx,
            {"lead_id": str(lead.id), "from": _id_or_none(previous_assignee), "to": str(assignee_id)},
        )
        return LeadRead.model_validate(lead)

    def add_note(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, content: str) -> LeadActivityRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        activity = self._append_activity(session, lead, ctx, ACTIVITY_NOTE, {"content": content})
        session.commit()
        session.refresh(activity)

        self._invalidate(ctx)
        return LeadActivityRead.model_validate(activity)

    def convert(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadConvertRequest) -> LeadRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id, for_update=True)
        if lead.converted_client_id is not None:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lead has already been converted")

        client = Client(
            email=str(dto.email),
            password_hash=hash_password(dto.password),
            company_name=dto.company_name,
            contact_name=dto.contact_name,
            phone=dto.phone,
            brand_id=lead.brand_id,
            organization_id=lead.organization_id,
        )
        try:
            session.add(client)
            session.flush()

            previous_status = lead.status
            lead.converted_client_id = client.id
            lead.status = CLOSED
            session.add(lead)
            self._append_activity(
                session,
                lead,
                ctx,
                ACTIVITY_CONVERSION,
                {"client_id": str(client.id), "company_name": client.company_name},
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")

        session.refresh(lead)
        self._invalidate(ctx)
        logger.info(
            "lead.converted",
            extra={"lead_id": str(lead.id), "status": previous_status, "organization_id": str(ctx.organization_id)},
        )
        self._publish(
            "lead.converted",
            ctx,
            {"lead_id": str(lead.id), "client_id": str(client.id), "previous_status": previous_status},
        )
        return LeadRead.model_validate(lead)

    def list_activities(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> list[LeadActivityRead]:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id)
        rows = session.scalars(
            select(LeadActivity).where(LeadActivity.lead_id == lead.id).order_by(LeadActivity.sequence.desc())
        ).all()
        return [LeadActivityRead.model_validate(row) for row in rows]

    def _load_page(self, session: Session, ctx: AuthContext, filters: dict[str, Any], page: int, limit: int) -> LeadPage:
        stmt = self._filtered_query(ctx, filters)
        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.order_by(Lead.created_at.desc(), Lead.id).offset(page_offset(page, limit)).limit(limit)
        ).all()
        return LeadPage(
            data=[LeadRead.model_validate(row) for row in rows],
            meta=page_meta(total, page, limit),
        )

    def _filtered_query(self, ctx: AuthContext, filters: dict[str, Any]) -> Select[tuple[Lead]]:
        stmt: Select[tuple[Lead]] = self.lead_repository.apply_scope_query(select(Lead), ctx)
        if filters.get("status"):
            stmt = stmt.where(Lead.status == filters["status"])
        if filters.get("source"):
            stmt = stmt.where(Lead.source == filters["source"])
        if filters.get("assigned_to_id"):
            stmt = stmt.where(Lead.assigned_to_id == filters["assigned_to_id"])
        if filters.get("brand_id"):
            stmt = stmt.where(Lead.brand_id == filters["brand_id"])
        if filters.get("date_from"):
            stmt = stmt.where(Lead.created_at >= filters["date_from"])
        if filters.get("date_to"):
            stmt = stmt.where(Lead.created_at <= filters["date_to"])
        if filters.get("search"):
            stmt = stmt.where(Lead.title.ilike(f"%{filters['search']}%"))
        return stmt

    def _load_detail(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadDetailRead:
        lead = self.lead_repository.get_scoped(session, ctx, lead_id)
        detail = LeadDetailRead.model_validate(lead)
        detail.activities = self.list_activities(session, ctx, lead.id)
        return detail

    @staticmethod
    def _get_assignee(session: Session, ctx: AuthContext, assignee_id: uuid.UUID) -> User:
        assignee = session.get(User, assignee_id)
        if assignee is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignee not found")
        if assignee.organization_id != ctx.organization_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee must be in the same organization")
        return assignee

    @staticmethod
    def _append_activity(
        session: Session,
        lead: Lead,
        ctx: AuthContext,
        activity_type: str,
        data: dict[str, Any],
    ) -> LeadActivity:
        last_sequence = session.scalar(
            select(func.coalesce(func.max(LeadActivity.sequence), 0)).where(LeadActivity.lead_id == lead.id)
        )
        activity = LeadActivity(
            sequence=int(last_sequence or 0) + 1,
            type=activity_type,
            data=data,
            lead_id=lead.id,
            user_id=ctx.user_id,
        )
        session.add(activity)
        session.flush()
        return activity

    @staticmethod
    def _invalidate(ctx: AuthContext) -> None:
        get_read_cache().invalidate(ctx.organization_id, CACHE_ENTITY)

    @staticmethod
    def _publish(event_type: str, ctx: AuthContext, payload: dict[str, Any]) -> None:
        events.publish(
            events.build_envelope(
                event_type,
                organization_id=str(ctx.organization_id),
                actor_user_id=str(ctx.user_id),
                payload=payload,
            )
        )


lead_service = LeadService()
