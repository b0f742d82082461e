"""
Unit tests for Invoice DAO.

WHAT: Tests for InvoiceDAO database operations.

WHY: Verifies that:
1. Invoices are created together with their line items
2. Tenant scoping is enforced (multi-tenancy security)
3. The verification code lookup is case-insensitive
4. A seal is written exactly once
5. Lifecycle updates handle timestamps correctly

HOW: Uses pytest-asyncio with an in-memory SQLite database.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.models.invoice import DeliveryStatus, PaymentStatus
from tests.factories import InvoiceFactory


class TestInvoiceDAOCreate:
    """Tests for invoice creation."""

    @pytest.mark.asyncio
    async def test_create_with_items(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session,
            test_tenant,
            items=[
                {
                    "description": "Design",
                    "quantity": Decimal("1"),
                    "unit_price": Decimal("300.00"),
                    "amount": Decimal("300.00"),
                },
                {
                    "description": "Hosting",
                    "quantity": Decimal("12"),
                    "unit_price": Decimal("5.00"),
                    "amount": Decimal("60.00"),
                },
            ],
            seal=False,
        )

        assert [item.description for item in invoice.items] == ["Design", "Hosting"]
        assert [item.sort_order for item in invoice.items] == [0, 1]
        assert invoice.total_amount == Decimal("360.00")
        assert invoice.is_sealed is False

    @pytest.mark.asyncio
    async def test_next_sequence_is_per_tenant(self, db_session, test_tenant, free_tenant):
        await InvoiceFactory.create(db_session, test_tenant)
        await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)

        assert await dao.next_sequence(test_tenant.id) == 3
        assert await dao.next_sequence(free_tenant.id) == 1


class TestInvoiceDAOLookup:
    """Tests for lookups and tenant scoping."""

    @pytest.mark.asyncio
    async def test_get_by_id_and_tenant_scoping(self, db_session, test_tenant, free_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)

        assert (await dao.get_by_id_and_tenant(invoice.id, test_tenant.id)).id == invoice.id
        assert await dao.get_by_id_and_tenant(invoice.id, free_tenant.id) is None

    @pytest.mark.asyncio
    async def test_get_by_verification_code_is_case_insensitive(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)

        found = await dao.get_by_verification_code(f"  {invoice.verification_code.lower()} ")

        assert found.id == invoice.id
        assert await dao.verification_code_exists(invoice.verification_code)
        assert not await dao.verification_code_exists("000000000000")


class TestInvoiceDAOSeal:
    """Tests for set_seal."""

    @pytest.mark.asyncio
    async def test_seal_written_once(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant, seal=False)
        dao = InvoiceDAO(db_session)

        assert await dao.set_seal(invoice.id, "AAAAAAAAAAAA", "a" * 64) is True
        assert await dao.set_seal(invoice.id, "BBBBBBBBBBBB", "b" * 64) is False

        stored = await dao.get_by_id(invoice.id)
        assert stored.verification_code == "AAAAAAAAAAAA"
        assert stored.sealed_hash == "a" * 64


class TestInvoiceDAOLifecycle:
    """Tests for status, due date and delivery updates."""

    @pytest.mark.asyncio
    async def test_mark_paid_sets_paid_at(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)

        paid = await dao.update_status(
            invoice.id, test_tenant.id, PaymentStatus.PAID, delivery_status=DeliveryStatus.SENT
        )

        assert paid.payment_status == PaymentStatus.PAID
        assert paid.delivery_status == DeliveryStatus.SENT
        assert paid.paid_at is not None

    @pytest.mark.asyncio
    async def test_reopening_clears_paid_at(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)
        await dao.update_status(invoice.id, test_tenant.id, PaymentStatus.PAID)

        reopened = await dao.update_status(invoice.id, test_tenant.id, PaymentStatus.PENDING)

        assert reopened.paid_at is None

    @pytest.mark.asyncio
    async def test_update_due_date(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        new_due = invoice.due_date + timedelta(days=10)

        updated = await InvoiceDAO(db_session).update_due_date(invoice.id, test_tenant.id, new_due)

        assert updated.due_date == new_due

    @pytest.mark.asyncio
    async def test_mark_sent(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)

        sent = await InvoiceDAO(db_session).mark_sent(invoice.id, test_tenant.id)

        assert sent.delivery_status == DeliveryStatus.SENT
        assert sent.sent_at is not None

    @pytest.mark.asyncio
    async def test_updates_scoped_to_tenant(self, db_session, test_tenant, free_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        dao = InvoiceDAO(db_session)

        assert await dao.update_status(invoice.id, free_tenant.id, PaymentStatus.PAID) is None
        assert await dao.mark_sent(invoice.id, free_tenant.id) is None
