from __future__ import annotations

from sentra.business.sales.models import Sale
from sentra.platform.security.repository import OrganizationScopedRepository


class SaleRepository(OrganizationScopedRepository[Sale]):
    model = Sale
    entity_label = "Sale"
