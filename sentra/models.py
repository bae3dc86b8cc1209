"""Imports every mapped module so ``Base.metadata`` and the mapper registry are complete."""

from sentra.business.billing.models import Invoice, InvoiceSequence
from sentra.business.payments.models import PaymentTransaction
from sentra.business.sales.models import Sale
from sentra.crm.models import Lead, LeadActivity
from sentra.tenancy.models import Brand, Client, Organization, User

__all__ = [
    "Brand",
    "Client",
    "Invoice",
    "InvoiceSequence",
    "Lead",
    "LeadActivity",
    "Organization",
    "PaymentTransaction",
    "Sale",
    "User",
]
