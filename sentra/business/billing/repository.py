from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, select

from sentra.business.billing.models import Invoice
from sentra.business.sales.models import Sale
from sentra.platform.security.repository import OrganizationScopedRepository


class InvoiceRepository(OrganizationScopedRepository[Invoice]):
    model = Invoice
    entity_label = "Invoice"

    def base_query(self) -> Select[Any]:
        return select(Invoice).join(Sale, Invoice.sale_id == Sale.id)

    def organization_column(self) -> Any:
        return Sale.organization_id

    def organization_id_of(self, row: Invoice) -> uuid.UUID:
        return row.sale.organization_id
