# CREATE FILE: services/cart_service/tests/test_cart_ledger.py

import asyncio
import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from services.cart_service.cart import CartLedger
from services.common.domain import ActorContext, CartLine, PatientDestination, Role
from services.common.errors import (
    CartAccessError, InvalidQuantityError, InvariantViolationError, NotFoundError
)
from services.common.store import InMemoryPortalStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
OWNER = ActorContext(user_id="practice-1", role=Role.PRACTICE, practice_id="practice-1")
STRANGER = ActorContext(user_id="practice-2", role=Role.PRACTICE, practice_id="practice-2")


def make_line(cart_id, line_id, price="85.00", quantity=1, created_at=NOW):
    return CartLine(
        id=line_id,
        cart_id=cart_id,
        product_id="prod-1",
        quantity=quantity,
        price_snapshot=Decimal(price),
        destination_state="FL",
        assigned_pharmacy_id="ph-a",
        destination=PatientDestination(patient_id="pat-1", patient_name="Jane Doe", state="FL"),
        provider_id="prov-1",
        created_at=created_at,
        expires_at=created_at + timedelta(hours=24),
    )


class TestCartLedger:

    @pytest.fixture
    def store(self):
        store = InMemoryPortalStore()
        cart = asyncio.run(store.create_cart("practice-1"))
        asyncio.run(store.insert_cart_line("practice-1", make_line(cart.id, "line-1", quantity=2)))
        asyncio.run(store.insert_cart_line("practice-1", make_line(cart.id, "line-2", price="40.00",
                                                                   created_at=NOW + timedelta(hours=1))))
        return store

    @pytest.fixture
    def ledger(self, store):
        return CartLedger(store)

    def test_summary_totals(self, ledger):
        summary = asyncio.run(ledger.summary("practice-1", OWNER, NOW))

        assert [line.id for line in summary.lines] == ["line-1", "line-2"]
        assert summary.item_count == 3
        assert summary.total == Decimal('210.00')
        assert summary.expired_line_count == 0

    def test_expired_lines_excluded(self, ledger):
        summary = asyncio.run(ledger.summary("practice-1", OWNER, NOW + timedelta(hours=24, minutes=30)))

        assert [line.id for line in summary.lines] == ["line-2"]
        assert summary.total == Decimal('40.00')
        assert summary.expired_line_count == 1

    def test_owner_without_cart(self, ledger):
        newcomer = ActorContext(user_id="practice-9", role=Role.PRACTICE, practice_id="practice-9")

        summary = asyncio.run(ledger.summary("practice-9", newcomer, NOW))

        assert summary.cart_id is None
        assert summary.lines == []
        assert summary.total == Decimal('0.00')

    def test_update_quantity_keeps_snapshot(self, ledger, store):
        line = asyncio.run(ledger.update_quantity("practice-1", "line-1", 5, OWNER))

        assert line.quantity == 5
        assert line.price_snapshot == Decimal('85.00')
        assert line.assigned_pharmacy_id == "ph-a"
        assert store.cart_lines["line-1"].quantity == 5

    def test_update_quantity_rejects_zero(self, ledger, store):
        with pytest.raises(InvalidQuantityError):
            asyncio.run(ledger.update_quantity("practice-1", "line-1", 0, OWNER))
        assert store.cart_lines["line-1"].quantity == 2

    def test_update_other_owners_line(self, ledger):
        """Even for its own cart, an actor cannot reach a line stored in another cart"""
        asyncio.run(ledger.store.create_cart("practice-2"))
        with pytest.raises(CartAccessError):
            asyncio.run(ledger.update_quantity("practice-2", "line-1", 3, STRANGER))

    def test_update_missing_line(self, ledger):
        with pytest.raises(NotFoundError):
            asyncio.run(ledger.update_quantity("practice-1", "line-404", 3, OWNER))

    def test_remove_line(self, ledger, store):
        asyncio.run(ledger.remove_line("practice-1", "line-2", OWNER))

        assert "line-2" not in store.cart_lines
        summary = asyncio.run(ledger.summary("practice-1", OWNER, NOW))
        assert summary.item_count == 2

    def test_remove_other_owners_line(self, ledger, store):
        with pytest.raises(CartAccessError):
            asyncio.run(ledger.remove_line("practice-2", "line-1", STRANGER))
        assert "line-1" in store.cart_lines


class TestCartLedgerAccess:

    @pytest.fixture
    def store(self):
        store = InMemoryPortalStore()
        cart = asyncio.run(store.create_cart("practice-1"))
        asyncio.run(store.insert_cart_line("practice-1", make_line(cart.id, "line-1", quantity=2)))
        return store

    @pytest.fixture
    def ledger(self, store):
        return CartLedger(store)

    def test_stranger_cannot_read_cart(self, ledger):
        with pytest.raises(CartAccessError):
            asyncio.run(ledger.summary("practice-1", STRANGER, NOW))

    def test_stranger_cannot_change_quantity(self, ledger, store):
        with pytest.raises(CartAccessError):
            asyncio.run(ledger.update_quantity("practice-1", "line-1", 50, STRANGER))
        assert store.cart_lines["line-1"].quantity == 2

    def test_stranger_cannot_remove_line(self, ledger, store):
        with pytest.raises(CartAccessError):
            asyncio.run(ledger.remove_line("practice-1", "line-1", STRANGER))
        assert "line-1" in store.cart_lines

    def test_provider_reaches_practice_cart(self, ledger):
        provider = ActorContext(user_id="prov-1", role=Role.PROVIDER, practice_id="practice-1")

        summary = asyncio.run(ledger.summary("practice-1", provider, NOW))

        assert summary.item_count == 2

    def test_admin_reaches_any_cart(self, ledger):
        admin = ActorContext(user_id="admin-1", role=Role.ADMIN)

        line = asyncio.run(ledger.update_quantity("practice-1", "line-1", 3, admin))

        assert line.quantity == 3


class TestStoreInvariants:

    def test_line_without_pharmacy_is_refused(self):
        store = InMemoryPortalStore()
        cart = asyncio.run(store.create_cart("practice-1"))
        line = replace(make_line(cart.id, "line-1"), assigned_pharmacy_id=None)

        with pytest.raises(InvariantViolationError):
            asyncio.run(store.insert_cart_line("practice-1", line))
        assert store.cart_lines == {}

    def test_line_into_foreign_cart_is_refused(self):
        store = InMemoryPortalStore()
        cart = asyncio.run(store.create_cart("practice-1"))
        asyncio.run(store.create_cart("practice-2"))

        with pytest.raises(CartAccessError):
            asyncio.run(store.insert_cart_line("practice-2", make_line(cart.id, "line-1")))
