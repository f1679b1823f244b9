# CREATE FILE: services/routing_service/tests/test_eligibility.py

import asyncio
import pytest
from decimal import Decimal

from services.common.domain import Pharmacy, PharmacyRepAssignment, Product
from services.common.errors import InvalidStateCodeError
from services.common.store import InMemoryPortalStore
from services.routing_service.eligibility import (
    DEFAULT_PRIORITY, PharmacyEligibilityIndex, state_priority
)


class TestStatePriority:

    def test_upper_case_key(self):
        pharmacy = Pharmacy(id="a", name="A", priority_map={"FL": 2})
        assert state_priority(pharmacy, "FL") == 2

    def test_lower_case_key_fallback(self):
        pharmacy = Pharmacy(id="a", name="A", priority_map={"fl": 3})
        assert state_priority(pharmacy, "FL") == 3

    def test_non_positive_values_are_unset(self):
        pharmacy = Pharmacy(id="a", name="A", priority_map={"FL": 0, "CA": -1, "NY": "1", "TX": True})

        assert state_priority(pharmacy, "FL") is None
        assert state_priority(pharmacy, "CA") is None
        assert state_priority(pharmacy, "NY") is None
        assert state_priority(pharmacy, "TX") is None

    def test_missing_map(self):
        assert state_priority(Pharmacy(id="a", name="A", priority_map=None), "FL") is None


class TestPharmacyEligibilityIndex:

    @pytest.fixture
    def store(self):
        store = InMemoryPortalStore()
        store.add_pharmacy(Pharmacy(id="ph-a", name="Alpha Compounding", states_serviced=frozenset({"CA", "FL"}),
                                    priority_map={"FL": 1}))
        store.add_pharmacy(Pharmacy(id="ph-b", name="Bravo Rx", states_serviced=frozenset({"FL", "NY"}),
                                    priority_map={"FL": 2}))
        store.add_pharmacy(Pharmacy(id="ph-c", name="Charlie Pharmacy", states_serviced=frozenset({"FL"})))
        store.add_pharmacy(Pharmacy(id="ph-off", name="Closed Pharmacy", active=False,
                                    states_serviced=frozenset({"FL"}), priority_map={"FL": 1}))
        store.add_product(Product(id="prod-1", name="Semaglutide", base_price=Decimal('50.00')),
                          ["ph-a", "ph-b", "ph-c", "ph-off"])
        store.add_product(Product(id="prod-orphan", name="Unassigned", base_price=Decimal('10.00')))
        return store

    @pytest.fixture
    def index(self, store):
        return PharmacyEligibilityIndex(store, {"default_priority": DEFAULT_PRIORITY})

    def test_candidates_sorted_by_priority(self, index):
        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "FL"))

        assert [c.pharmacy_id for c in candidates] == ["ph-a", "ph-b", "ph-c"]
        assert [c.priority for c in candidates] == [1, 2, DEFAULT_PRIORITY]
        assert candidates[2].has_state_priority is False

    def test_inactive_pharmacy_excluded(self, index):
        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "FL"))
        assert "ph-off" not in [c.pharmacy_id for c in candidates]

    def test_only_pharmacies_serving_state(self, index):
        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "NY"))
        assert [c.pharmacy_id for c in candidates] == ["ph-b"]

    def test_no_pharmacy_for_state(self, index):
        result = asyncio.run(index.evaluate("prod-1", "TX"))

        assert result.candidates == []
        assert result.total_assignments == 4
        assert result.active_pharmacies == 3
        assert result.pharmacies_serving_state == 0

    def test_product_without_assignments(self, index):
        result = asyncio.run(index.evaluate("prod-orphan", "FL"))

        assert result.candidates == []
        assert result.total_assignments == 0

    def test_ties_break_on_pharmacy_id(self, store, index):
        store.add_pharmacy(Pharmacy(id="ph-0", name="Zero", states_serviced=frozenset({"FL"}),
                                    priority_map={"FL": 2}))
        store.product_pharmacies["prod-1"].append("ph-0")

        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "FL"))

        assert [c.pharmacy_id for c in candidates][:3] == ["ph-a", "ph-0", "ph-b"]

    def test_custom_default_priority(self, store):
        index = PharmacyEligibilityIndex(store, {"default_priority": 50})
        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "FL"))
        assert candidates[-1].priority == 50

    def test_state_is_trimmed(self, index):
        result = asyncio.run(index.evaluate("prod-1", " NY "))
        assert result.state == "NY"

    @pytest.mark.parametrize("state", ["", "  ", "fl", "Florida", "XX", None])
    def test_invalid_state_raises(self, index, state):
        with pytest.raises(InvalidStateCodeError):
            asyncio.run(index.evaluate("prod-1", state))

    def test_invalid_state_does_not_read_store(self, store, index):
        with pytest.raises(InvalidStateCodeError):
            asyncio.run(index.evaluate("prod-1", "ZZ"))
        assert store.read_count == 0


class TestRepScope:

    @pytest.fixture
    def store(self):
        store = InMemoryPortalStore()
        store.add_pharmacy(Pharmacy(id="ph-global", name="Global Rx", states_serviced=frozenset({"FL"}),
                                    priority_map={"FL": 5}))
        store.add_pharmacy(Pharmacy(id="ph-rep1", name="Rep One Rx", states_serviced=frozenset({"FL"}),
                                    priority_map={"FL": 1}))
        store.add_pharmacy(Pharmacy(id="ph-rep2", name="Rep Two Rx", states_serviced=frozenset({"FL"}),
                                    priority_map={"FL": 2}))
        store.add_rep_assignment(PharmacyRepAssignment(pharmacy_id="ph-rep1", topline_rep_id="rep-1"))
        store.add_rep_assignment(PharmacyRepAssignment(pharmacy_id="ph-rep2", topline_rep_id="rep-2"))
        store.add_product(Product(id="prod-1", name="Semaglutide", base_price=Decimal('50.00')),
                          ["ph-global", "ph-rep1", "ph-rep2"])
        return store

    @pytest.fixture
    def index(self, store):
        return PharmacyEligibilityIndex(store)

    def test_scoped_pharmacies_hidden_from_other_reps(self, index):
        result = asyncio.run(index.evaluate("prod-1", "FL", "rep-1"))

        assert [c.pharmacy_id for c in result.candidates] == ["ph-rep1", "ph-global"]
        assert result.filtered_by_rep_scope is True
        assert result.excluded_by_rep_scope == ["ph-rep2"]

    def test_unknown_rep_sees_global_only(self, index):
        candidates = asyncio.run(index.eligible_pharmacies("prod-1", "FL", "rep-9"))
        assert [c.pharmacy_id for c in candidates] == ["ph-global"]

    def test_no_scope_applies_no_filter(self, index):
        result = asyncio.run(index.evaluate("prod-1", "FL"))

        assert [c.pharmacy_id for c in result.candidates] == ["ph-rep1", "ph-rep2", "ph-global"]
        assert result.filtered_by_rep_scope is False
