from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sentra import events
from sentra import models  # noqa: F401
from sentra.business.billing.models import Invoice, InvoiceSequence
from sentra.business.billing.schemas import InvoiceCreate, InvoiceUpdate
from sentra.business.billing.service import invoice_service, parse_invoice_sequence
from sentra.business.payments.gateway import GatewayResult
from sentra.business.payments.models import PaymentTransaction
from sentra.business.sales.models import Sale
from sentra.core.cache import get_read_cache
from sentra.core.config import get_settings
from sentra.core.database import Base
from sentra.platform.security.context import AuthContext
from sentra.tenancy.models import Brand, Client, Organization, User


class ChargeOnlyGateway:
    def __init__(self, result: GatewayResult) -> None:
        self.result = result
        self.charges: list[tuple[str, str, Decimal, str | None]] = []

    def charge_customer_profile(self, customer_profile_id, payment_profile_id, amount, invoice_number=None) -> GatewayResult:  # type: ignore[no-untyped-def]
        self.charges.append((customer_profile_id, payment_profile_id, amount, invoice_number))
        return self.result


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

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


def _seed(session: Session, name: str = "Acme", *, with_profiles: bool = True) -> tuple[AuthContext, Sale]:
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
    session.flush()
    sale = Sale(
        total_amount=Decimal("1000.00"),
        client_id=client.id,
        brand_id=brand.id,
        organization_id=organization.id,
        customer_profile_id="cp-1" if with_profiles else None,
        payment_profile_id="pp-1" if with_profiles else None,
    )
    session.add(sale)
    session.commit()
    return AuthContext(user_id=owner.id, organization_id=organization.id, role="OWNER"), sale


def _create(session: Session, ctx: AuthContext, sale: Sale, *, amount: str = "250.00", due: date = date(2026, 11, 30), today: date = date(2026, 10, 19)):
    return invoice_service.create_invoice(
        session,
        ctx,
        InvoiceCreate(sale_id=sale.id, amount=Decimal(amount), due_date=due),
        today=today,
    )


def test_parse_invoice_sequence() -> None:
    assert parse_invoice_sequence("INV-2026-0007") == 7
    assert parse_invoice_sequence("INV-2026-12345") == 12345
    assert parse_invoice_sequence("LEGACY-7") == 0
    assert parse_invoice_sequence("INV-2026-00A1") == 0


def test_invoice_numbers_are_sequential_per_year(db_session: Session) -> None:
    ctx, sale = _seed(db_session)

    first = _create(db_session, ctx, sale)
    second = _create(db_session, ctx, sale)
    next_year = _create(db_session, ctx, sale, today=date(2027, 1, 2))

    assert first.invoice_number == "INV-2026-0001"
    assert second.invoice_number == "INV-2026-0002"
    assert next_year.invoice_number == "INV-2027-0001"
    assert first.status == "UNPAID"


def test_deleted_invoice_number_is_not_reused(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    _create(db_session, ctx, sale)
    latest = _create(db_session, ctx, sale)

    invoice_service.remove_invoice(db_session, ctx, latest.id)
    replacement = _create(db_session, ctx, sale)

    assert replacement.invoice_number == "INV-2026-0003"


def test_numbering_continues_past_rows_written_without_sequence(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    db_session.add(Invoice(invoice_number="INV-2026-0041", amount=Decimal("1.00"), due_date=date(2026, 12, 1), sale_id=sale.id))
    db_session.add(Invoice(invoice_number="INV-2026-0009", amount=Decimal("1.00"), due_date=date(2026, 12, 1), sale_id=sale.id))
    db_session.commit()

    created = _create(db_session, ctx, sale)

    assert created.invoice_number == "INV-2026-0042"
    assert db_session.get(InvoiceSequence, 2026).last_value == 42


def test_numbering_orders_numerically_past_four_digits(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    db_session.add(Invoice(invoice_number="INV-2026-9999", amount=Decimal("1.00"), due_date=date(2026, 12, 1), sale_id=sale.id))
    db_session.add(Invoice(invoice_number="INV-2026-10000", amount=Decimal("1.00"), due_date=date(2026, 12, 1), sale_id=sale.id))
    db_session.commit()

    created = _create(db_session, ctx, sale)

    assert created.invoice_number == "INV-2026-10001"


def test_number_collision_is_retried(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    ctx, sale = _seed(db_session)
    existing = _create(db_session, ctx, sale)
    original = type(invoice_service).generate_invoice_number
    attempts: list[str] = []

    def colliding_once(self, session, today):  # type: ignore[no-untyped-def]
        number = original(self, session, today)
        if not attempts:
            number = existing.invoice_number
        attempts.append(number)
        return number

    monkeypatch.setattr(type(invoice_service), "generate_invoice_number", colliding_once)
    created = _create(db_session, ctx, sale)

    assert attempts[0] == existing.invoice_number
    assert created.invoice_number == "INV-2026-0002"
    assert len(db_session.scalars(select(Invoice)).all()) == 2


def test_exhausted_retries_return_conflict(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    ctx, sale = _seed(db_session)
    existing = _create(db_session, ctx, sale)
    monkeypatch.setenv("INVOICE_NUMBER_MAX_ATTEMPTS", "2")
    get_settings.cache_clear()
    monkeypatch.setattr(type(invoice_service), "generate_invoice_number", lambda self, session, today: existing.invoice_number)

    with pytest.raises(HTTPException) as exc_info:
        _create(db_session, ctx, sale)

    assert exc_info.value.status_code == 409
    assert len(db_session.scalars(select(Invoice)).all()) == 1


def test_create_invoice_for_foreign_sale_is_forbidden(db_session: Session) -> None:
    _, sale = _seed(db_session, "Acme")
    other_ctx, _ = _seed(db_session, "Globex")

    with pytest.raises(HTTPException) as exc_info:
        _create(db_session, other_ctx, sale)

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Sale belongs to another organization"


def test_pay_invoice_success_marks_paid_in_one_commit(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale)
    gateway = ChargeOnlyGateway(GatewayResult(success=True, transaction_id="70001", response_code="1", message="Approved"))

    paid = invoice_service.pay_invoice(db_session, ctx, invoice.id, gateway)

    assert paid.invoice.status == "PAID"
    assert paid.transaction.status == "SUCCESS"
    assert paid.transaction.invoice_id == invoice.id
    assert paid.transaction.sale_id == sale.id
    assert gateway.charges == [("cp-1", "pp-1", Decimal("250.00"), invoice.invoice_number)]

    with pytest.raises(HTTPException) as again:
        invoice_service.pay_invoice(db_session, ctx, invoice.id, gateway)
    assert again.value.detail == "Invoice is already paid"
    assert len(gateway.charges) == 1


def test_pay_invoice_decline_keeps_invoice_unpaid(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale)
    gateway = ChargeOnlyGateway(GatewayResult(success=False, response_code="2", message="Card declined"))

    with pytest.raises(HTTPException) as exc_info:
        invoice_service.pay_invoice(db_session, ctx, invoice.id, gateway)

    assert exc_info.value.detail == "Payment failed: Card declined"
    assert db_session.get(Invoice, invoice.id).status == "UNPAID"
    rows = db_session.scalars(select(PaymentTransaction)).all()
    assert [(row.status, row.invoice_id) for row in rows] == [("FAILED", invoice.id)]


def test_pay_invoice_timeout_is_recorded_as_failed(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale)
    gateway = ChargeOnlyGateway(GatewayResult(success=False, message="Payment gateway timeout"))

    with pytest.raises(HTTPException) as exc_info:
        invoice_service.pay_invoice(db_session, ctx, invoice.id, gateway)

    assert exc_info.value.detail == "Payment failed: Payment gateway timeout"
    assert db_session.scalars(select(PaymentTransaction.status)).all() == ["FAILED"]


def test_pay_invoice_without_profiles(db_session: Session) -> None:
    ctx, sale = _seed(db_session, with_profiles=False)
    invoice = _create(db_session, ctx, sale)
    gateway = ChargeOnlyGateway(GatewayResult(success=True))

    with pytest.raises(HTTPException) as exc_info:
        invoice_service.pay_invoice(db_session, ctx, invoice.id, gateway)

    assert exc_info.value.detail == "Sale does not have payment profiles configured"
    assert gateway.charges == []


def test_overdue_invoice_can_still_be_paid(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale, due=date(2026, 10, 1))
    refreshed = invoice_service.refresh_overdue(db_session, ctx, today=date(2026, 10, 19))
    assert refreshed.updated_count == 1
    assert db_session.get(Invoice, invoice.id).status == "OVERDUE"

    paid = invoice_service.pay_invoice(
        db_session,
        ctx,
        invoice.id,
        ChargeOnlyGateway(GatewayResult(success=True, transaction_id="70002", response_code="1")),
    )
    assert paid.invoice.status == "PAID"


def test_refresh_overdue_only_touches_own_unpaid_past_due(db_session: Session) -> None:
    ctx, sale = _seed(db_session, "Acme")
    other_ctx, other_sale = _seed(db_session, "Globex")
    past_due = _create(db_session, ctx, sale, due=date(2026, 9, 1))
    _create(db_session, ctx, sale, due=date(2026, 12, 1))
    _create(db_session, other_ctx, other_sale, due=date(2026, 9, 1))

    result = invoice_service.refresh_overdue(db_session, ctx, today=date(2026, 10, 19))

    assert result.updated_count == 1
    statuses = {row.invoice_number: row.status for row in db_session.scalars(select(Invoice))}
    assert statuses[past_due.invoice_number] == "OVERDUE"
    assert sorted(statuses.values()) == ["OVERDUE", "UNPAID", "UNPAID"]


def test_paid_invoice_amount_is_frozen(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale)
    invoice_service.pay_invoice(
        db_session,
        ctx,
        invoice.id,
        ChargeOnlyGateway(GatewayResult(success=True, transaction_id="70003", response_code="1")),
    )

    with pytest.raises(HTTPException) as exc_info:
        invoice_service.update_invoice(db_session, ctx, invoice.id, InvoiceUpdate(amount=Decimal("1.00")))
    assert exc_info.value.detail == "Paid invoice cannot be modified"

    noted = invoice_service.update_invoice(db_session, ctx, invoice.id, InvoiceUpdate(notes="Paid by card"))
    assert noted.notes == "Paid by card"
    assert noted.status == "PAID"


def test_list_invoices_filters_and_sees_fresh_writes(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    _create(db_session, ctx, sale, due=date(2026, 11, 1))

    first = invoice_service.list_invoices(db_session, ctx, {"due_before": date(2026, 11, 15)})
    assert first.meta.total == 1

    _create(db_session, ctx, sale, due=date(2026, 11, 10))
    _create(db_session, ctx, sale, due=date(2026, 12, 10))

    second = invoice_service.list_invoices(db_session, ctx, {"due_before": date(2026, 11, 15)})
    assert second.meta.total == 2
    assert invoice_service.list_invoices(db_session, ctx, {"sale_id": sale.id}).meta.total == 3


def test_remove_invoice_deletes_its_transactions(db_session: Session) -> None:
    ctx, sale = _seed(db_session)
    invoice = _create(db_session, ctx, sale)
    with pytest.raises(HTTPException):
        invoice_service.pay_invoice(db_session, ctx, invoice.id, ChargeOnlyGateway(GatewayResult(success=False)))

    invoice_service.remove_invoice(db_session, ctx, invoice.id)

    assert db_session.get(Invoice, invoice.id) is None
    assert db_session.scalars(select(PaymentTransaction)).all() == []
