from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from sentra.platform.security.context import AuthContext
from sentra.platform.security.errors import AuthorizationError, TenancyViolationError

ModelT = TypeVar("ModelT")


class OrganizationScopedRepository(Generic[ModelT]):
    """Loads rows on behalf of a caller and enforces that they belong to the caller's organization.

    Subclasses set ``model`` and ``entity_label``. Entities that are scoped
    through a parent (invoices and transactions through their sale) override
    ``base_query`` and ``organization_id_of``.
    """

    model: type[ModelT]
    entity_label = ""

    def base_query(self) -> Select[Any]:
        return select(self.model)

    def organization_column(self) -> Any:
        return self.model.organization_id  # type: ignore[attr-defined]

    def organization_id_of(self, row: ModelT) -> uuid.UUID:
        return row.organization_id  # type: ignore[attr-defined]

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return query.where(self.organization_column() == ctx.organization_id)

    def ensure_same_organization(self, row: ModelT, ctx: AuthContext) -> None:
        if self.organization_id_of(row) != ctx.organization_id:
            raise TenancyViolationError(self.entity_label)

    def get_scoped(
        self,
        session: Session,
        ctx: AuthContext,
        entity_id: uuid.UUID,
        *,
        for_update: bool = False,
        options: Sequence[Any] = (),
    ) -> ModelT:
        stmt = self.base_query().where(self.model.id == entity_id)  # type: ignore[attr-defined]
        if options:
            stmt = stmt.options(*options)
        if for_update:
            stmt = stmt.with_for_update(of=self.model)
        row = session.scalar(stmt)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity_label} not found")
        try:
            self.ensure_same_organization(row, ctx)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return row

    def get_reference(self, session: Session, ctx: AuthContext, entity_id: uuid.UUID) -> ModelT:
        """Resolve an id named in a request body; a foreign row is a bad request rather than a forbidden read."""
        row = session.get(self.model, entity_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity_label} not found")
        try:
            self.ensure_same_organization(row, ctx)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return row
