from __future__ import annotations

from sentra.platform.security.repository import OrganizationScopedRepository
from sentra.tenancy.models import Brand, Client


class BrandRepository(OrganizationScopedRepository[Brand]):
    model = Brand
    entity_label = "Brand"


class ClientRepository(OrganizationScopedRepository[Client]):
    model = Client
    entity_label = "Client"
