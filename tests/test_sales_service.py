from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sentra import events
from sentra import models  # noqa: F401
from sentra.business.billing.models import Invoice
from sentra.business.payments.gateway import GatewayResult, OpaqueCardData
from sentra.business.payments.models import PaymentTransaction
from sentra.business.sales.models import Sale
from sentra.business.sales.schemas import ChargeRequest, PaymentProfileRequest, SaleCreate, SubscriptionCreate
from sentra.business.sales.service import sales_service
from sentra.core.cache import get_read_cache
from sentra.core.config import get_settings
from sentra.core.database import Base
from sentra.platform.security.context import AuthContext
from sentra.tenancy.models import Brand, Client, Organization, User


class FakeGateway:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.charge_result = GatewayResult(success=True, transaction_id="60001", response_code="1", message="This transaction has been approved.")
        self.subscription_result = GatewayResult(success=True, subscription_id="sub-100", message="Successful.")
        self.cancel_result = GatewayResult(success=True, message="Successful.")
        self.status_result = GatewayResult(success=True, message="active")
        self.customer_profile_result = GatewayResult(success=True, customer_profile_id="cp-1")
        self.payment_profile_result = GatewayResult(success=True, payment_profile_id="pp-1")

    def create_customer_profile(self, email: str, description: str | None = None) -> GatewayResult:
        self.calls.append(("create_customer_profile", (email, description)))
        return self.customer_profile_result

    def create_payment_profile(self, customer_profile_id: str, opaque_data: OpaqueCardData) -> GatewayResult:
        self.calls.append(("create_payment_profile", (customer_profile_id, opaque_data.data_descriptor)))
        return self.payment_profile_result

    def charge_customer_profile(self, customer_profile_id, payment_profile_id, amount, invoice_number=None) -> GatewayResult:  # type: ignore[no-untyped-def]
        self.calls.append(("charge_customer_profile", (customer_profile_id, payment_profile_id, amount, invoice_number)))
        return self.charge_result

    def create_subscription(self, **kwargs) -> GatewayResult:  # type: ignore[no-untyped-def]
        self.calls.append(("create_subscription", tuple(sorted(kwargs))))
        return self.subscription_result

    def cancel_subscription(self, subscription_id: str) -> GatewayResult:
        self.calls.append(("cancel_subscription", (subscription_id,)))
        return self.cancel_result

    def get_subscription_status(self, subscription_id: str) -> GatewayResult:
        self.calls.append(("get_subscription_status", (subscription_id,)))
        return self.status_result


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    get_read_cache.cache_clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    get_read_cache.cache_clear()
    events.published_events.clear()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


def _seed(session: Session, name: str = "Acme") -> tuple[AuthContext, Client, Brand]:
    organization = Organization(name=name)
    session.add(organization)
    session.flush()
    owner = User(
        email=f"owner-{uuid.uuid4().hex[:8]}@example.com",
        name="Owner",
        password_hash="x",
        role="OWNER",
        organization_id=organization.id,
    )
    brand = Brand(name="Brand", organization_id=organization.id)
    session.add_all([owner, brand])
    session.flush()
    client = Client(
        email=f"client-{uuid.uuid4().hex[:8]}@example.com",
        password_hash="x",
        company_name="Client Co",
        brand_id=brand.id,
        organization_id=organization.id,
    )
    session.add(client)
    session.commit()
    return AuthContext(user_id=owner.id, organization_id=organization.id, role="OWNER"), client, brand


def _sale(session: Session, ctx: AuthContext, client: Client, brand: Brand, *, with_profiles: bool = True) -> Sale:
    created = sales_service.create_sale(
        session,
        ctx,
        SaleCreate(total_amount=Decimal("1500.00"), currency="usd", client_id=client.id, brand_id=brand.id),
    )
    sale = session.get(Sale, created.id)
    if with_profiles:
        sale.customer_profile_id = "cp-1"
        sale.payment_profile_id = "pp-1"
        session.commit()
    return sale


def _transactions(session: Session) -> list[PaymentTransaction]:
    return list(session.scalars(select(PaymentTransaction).order_by(PaymentTransaction.created_at)))


def test_create_sale_normalizes_currency_and_rejects_foreign_client(db_session: Session) -> None:
    ctx, client, brand = _seed(db_session, "Acme")
    _, foreign_client, _ = _seed(db_session, "Globex")

    sale = _sale(db_session, ctx, client, brand, with_profiles=False)
    assert sale.currency == "USD"
    assert sale.status == "PENDING"

    with pytest.raises(HTTPException) as exc_info:
        sales_service.create_sale(
            db_session,
            ctx,
            SaleCreate(total_amount=Decimal("10.00"), client_id=foreign_client.id, brand_id=brand.id),
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Client belongs to another organization"


def test_charge_success_records_transaction(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)

    result = sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("500.00"), invoice_number="INV-X"), gateway)

    assert result.transaction.status == "SUCCESS"
    assert result.transaction.transaction_id == "60001"
    assert result.transaction.type == "ONE_TIME"
    assert gateway.calls == [("charge_customer_profile", ("cp-1", "pp-1", Decimal("500.00"), "INV-X"))]
    assert events.published_events[-1]["event_type"] == "sale.charged"


def test_charge_decline_persists_failed_row_and_raises(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    gateway.charge_result = GatewayResult(success=False, transaction_id=None, response_code="2", message="This transaction has been declined.")

    with pytest.raises(HTTPException) as exc_info:
        sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("500.00")), gateway)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Payment failed: This transaction has been declined."
    rows = _transactions(db_session)
    assert len(rows) == 1
    assert rows[0].status == "FAILED"
    assert rows[0].response_code == "2"
    assert rows[0].response_message == "This transaction has been declined."


def test_charge_failure_without_message_uses_generic_text(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    gateway.charge_result = GatewayResult(success=False)

    with pytest.raises(HTTPException) as exc_info:
        sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("1.00")), gateway)

    assert exc_info.value.detail == "Payment failed: Payment gateway request failed"


def test_charge_without_profiles_writes_nothing(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand, with_profiles=False)

    with pytest.raises(HTTPException) as exc_info:
        sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("5.00")), gateway)

    assert exc_info.value.detail == "Sale does not have payment profiles configured"
    assert gateway.calls == []
    assert _transactions(db_session) == []


def test_charge_on_foreign_sale_is_forbidden(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session, "Acme")
    other_ctx, _, _ = _seed(db_session, "Globex")
    sale = _sale(db_session, ctx, client, brand)

    with pytest.raises(HTTPException) as exc_info:
        sales_service.charge(db_session, other_ctx, sale.id, ChargeRequest(amount=Decimal("5.00")), gateway)

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Sale belongs to another organization"
    assert gateway.calls == []


def test_subscribe_then_cancel(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    dto = SubscriptionCreate(
        name="Monthly retainer",
        interval_length=1,
        interval_unit="months",
        start_date=date(2026, 11, 1),
        total_occurrences=12,
        amount=Decimal("99.00"),
    )

    subscribed = sales_service.subscribe(db_session, ctx, sale.id, dto, gateway)
    assert subscribed.subscription_id == "sub-100"
    recurring = _transactions(db_session)
    assert [(row.type, row.status) for row in recurring] == [("RECURRING", "PENDING")]

    with pytest.raises(HTTPException) as duplicate:
        sales_service.subscribe(db_session, ctx, sale.id, dto, gateway)
    assert duplicate.value.detail == "Sale already has an active subscription"

    status = sales_service.get_subscription_status(db_session, ctx, sale.id, gateway)
    assert status.status == "active"

    cancelled = sales_service.cancel_subscription(db_session, ctx, sale.id, gateway)
    assert cancelled.message == "Subscription cancelled successfully"
    assert db_session.get(Sale, sale.id).subscription_id is None

    with pytest.raises(HTTPException) as nothing_to_cancel:
        sales_service.cancel_subscription(db_session, ctx, sale.id, gateway)
    assert nothing_to_cancel.value.detail == "Sale does not have an active subscription"


def test_subscription_failure_records_failed_recurring_row(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    gateway.subscription_result = GatewayResult(success=False, message="Invalid interval")

    with pytest.raises(HTTPException) as exc_info:
        sales_service.subscribe(
            db_session,
            ctx,
            sale.id,
            SubscriptionCreate(
                name="Broken",
                interval_length=1,
                interval_unit="days",
                start_date=date(2026, 11, 1),
                total_occurrences=1,
                amount=Decimal("10.00"),
            ),
            gateway,
        )

    assert exc_info.value.detail == "Subscription creation failed: Invalid interval"
    assert db_session.get(Sale, sale.id).subscription_id is None
    assert [(row.type, row.status) for row in _transactions(db_session)] == [("RECURRING", "FAILED")]


def test_cancel_failure_keeps_subscription(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    sale.subscription_id = "sub-9"
    db_session.commit()
    gateway.cancel_result = GatewayResult(success=False, message="Subscription not found")

    with pytest.raises(HTTPException) as exc_info:
        sales_service.cancel_subscription(db_session, ctx, sale.id, gateway)

    assert exc_info.value.detail == "Cancellation failed: Subscription not found"
    assert db_session.get(Sale, sale.id).subscription_id == "sub-9"


def test_configure_payment_profile_creates_both_profiles(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand, with_profiles=False)

    configured = sales_service.configure_payment_profile(
        db_session,
        ctx,
        sale.id,
        PaymentProfileRequest(data_descriptor="COMMON.ACCEPT.INAPP.PAYMENT", data_value="nonce"),
        gateway,
    )

    assert configured.customer_profile_id == "cp-1"
    assert configured.payment_profile_id == "pp-1"
    assert [name for name, _ in gateway.calls] == ["create_customer_profile", "create_payment_profile"]
    assert gateway.calls[0][1][0] == client.email


def test_payment_profile_failure_keeps_customer_profile(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand, with_profiles=False)
    gateway.payment_profile_result = GatewayResult(success=False, message="Invalid card data")

    with pytest.raises(HTTPException) as exc_info:
        sales_service.configure_payment_profile(
            db_session,
            ctx,
            sale.id,
            PaymentProfileRequest(data_descriptor="COMMON.ACCEPT.INAPP.PAYMENT", data_value="bad"),
            gateway,
        )

    assert exc_info.value.detail == "Payment profile creation failed: Invalid card data"
    stored = db_session.get(Sale, sale.id)
    assert stored.customer_profile_id == "cp-1"
    assert stored.payment_profile_id is None


def test_remove_sale_refuses_when_invoices_exist(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)
    db_session.add(Invoice(invoice_number="INV-2026-0001", amount=Decimal("10.00"), due_date=date(2026, 12, 1), sale_id=sale.id))
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        sales_service.remove_sale(db_session, ctx, sale.id)
    assert exc_info.value.detail == "Cannot delete sale with 1 invoice(s)"

    db_session.execute(Invoice.__table__.delete())
    db_session.commit()
    sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("5.00")), gateway)

    response = sales_service.remove_sale(db_session, ctx, sale.id)
    assert response.message == "Sale deleted successfully"
    assert db_session.get(Sale, sale.id) is None
    assert db_session.scalar(select(func.count()).select_from(PaymentTransaction)) == 0


def test_delete_for_sale_only_removes_that_sales_transactions(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    first = _sale(db_session, ctx, client, brand)
    second = _sale(db_session, ctx, client, brand)
    sales_service.charge(db_session, ctx, first.id, ChargeRequest(amount=Decimal("5.00")), gateway)
    gateway.charge_result = GatewayResult(success=True, transaction_id="60002", response_code="1")
    sales_service.charge(db_session, ctx, second.id, ChargeRequest(amount=Decimal("7.00")), gateway)

    removed = sales_service.payments.delete_for_sale(db_session, first.id)
    db_session.commit()

    assert removed == 1
    assert [(row.sale_id, row.transaction_id) for row in _transactions(db_session)] == [(second.id, "60002")]


def test_get_sale_detail_is_cached_until_a_write(db_session: Session, gateway: FakeGateway) -> None:
    ctx, client, brand = _seed(db_session)
    sale = _sale(db_session, ctx, client, brand)

    before = sales_service.get_sale(db_session, ctx, sale.id)
    assert before.transactions == []

    sales_service.charge(db_session, ctx, sale.id, ChargeRequest(amount=Decimal("5.00")), gateway)

    after = sales_service.get_sale(db_session, ctx, sale.id)
    assert len(after.transactions) == 1
