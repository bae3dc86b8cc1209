from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from sentra.business.payments.models import PaymentTransaction
from sentra.business.sales.models import Sale
from sentra.platform.security.repository import OrganizationScopedRepository


class PaymentTransactionRepository(OrganizationScopedRepository[PaymentTransaction]):
    model = PaymentTransaction
    entity_label = "Transaction"

    def base_query(self) -> Select[Any]:
        return select(PaymentTransaction).join(Sale, PaymentTransaction.sale_id == Sale.id)

    def organization_column(self) -> Any:
        return Sale.organization_id

    def organization_id_of(self, row: PaymentTransaction) -> uuid.UUID:
        return row.sale.organization_id

    def find_by_gateway_id(self, session: Session, transaction_id: str, *, for_update: bool = False) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(PaymentTransaction.transaction_id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalar(stmt)
