from __future__ import annotations

from sentra.crm.models import Lead
from sentra.platform.security.repository import OrganizationScopedRepository


class LeadRepository(OrganizationScopedRepository[Lead]):
    model = Lead
    entity_label = "Lead"
