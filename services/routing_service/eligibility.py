# CREATE FILE: services/routing_service/eligibility.py

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from services.common.domain import Pharmacy
from services.common.errors import InvalidStateCodeError
from services.common.states import is_valid_state_code, normalize_state_code
from services.common.store import PortalStore

DEFAULT_PRIORITY = 999


@dataclass(frozen=True)
class EligiblePharmacy:
    pharmacy_id: str
    name: str
    priority: int
    has_state_priority: bool

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.pharmacy_id, "name": self.name, "priority": self.priority}


@dataclass
class EligibilityResult:
    state: str
    candidates: List[EligiblePharmacy]
    total_assignments: int = 0
    active_pharmacies: int = 0
    pharmacies_serving_state: int = 0
    filtered_by_rep_scope: bool = False
    excluded_by_rep_scope: List[str] = field(default_factory=list)

    @property
    def diagnostics(self) -> Dict[str, Any]:
        return {
            "total_assignments": self.total_assignments,
            "active_pharmacies": self.active_pharmacies,
            "pharmacies_serving_state": self.pharmacies_serving_state,
            "filtered_by_rep_scope": self.filtered_by_rep_scope,
            "excluded_by_rep_scope": list(self.excluded_by_rep_scope),
        }


def state_priority(pharmacy: Pharmacy, state: str) -> Optional[int]:
    """
    Priority a pharmacy declares for a state, or None when it declares none.

    Keys are matched upper-case first, then lower-case. Only positive
    integers count as a declared priority.
    """
    priority_map = pharmacy.priority_map or {}
    value = priority_map.get(state.upper())
    if value is None:
        value = priority_map.get(state.lower())
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


class PharmacyEligibilityIndex:
    """Computes the ordered set of pharmacies able to fulfill a product in a state"""

    def __init__(self, store: PortalStore, config: Dict[str, Any] = None):
        config = config or {}
        self.store = store
        self.default_priority = config.get("default_priority", DEFAULT_PRIORITY)

    def validate_state(self, destination_state) -> str:
        """Trim and check a destination state; raises InvalidStateCodeError"""
        if not is_valid_state_code(destination_state):
            raise InvalidStateCodeError(destination_state)
        return normalize_state_code(destination_state)

    async def evaluate(self, product_id: str, destination_state: str,
                       rep_scope_id: Optional[str] = None) -> EligibilityResult:
        state = self.validate_state(destination_state)
        assigned = await self.store.list_product_pharmacies(product_id)

        active = [p for p in assigned if p.active]
        serving = [p for p in active if p.serves(state)]
        result = EligibilityResult(
            state=state,
            candidates=[],
            total_assignments=len(assigned),
            active_pharmacies=len(active),
            pharmacies_serving_state=len(serving),
        )

        if rep_scope_id and serving:
            serving = await self._apply_rep_scope(serving, rep_scope_id, result)

        candidates = []
        for pharmacy in serving:
            priority = state_priority(pharmacy, state)
            candidates.append(EligiblePharmacy(
                pharmacy_id=pharmacy.id,
                name=pharmacy.name,
                priority=priority if priority is not None else self.default_priority,
                has_state_priority=priority is not None,
            ))

        # Lower number wins; pharmacy id breaks ties so repeated calls agree
        candidates.sort(key=lambda c: (c.priority, c.pharmacy_id))
        result.candidates = candidates
        return result

    async def _apply_rep_scope(self, pharmacies: List[Pharmacy], rep_scope_id: str,
                               result: EligibilityResult) -> List[Pharmacy]:
        """Keep global pharmacies plus scoped pharmacies assigned to this rep"""
        assignments = await self.store.list_pharmacy_rep_assignments(p.id for p in pharmacies)
        scoped_ids = {a.pharmacy_id for a in assignments}
        rep_ids = {a.pharmacy_id for a in assignments if a.topline_rep_id == rep_scope_id}

        kept = []
        for pharmacy in pharmacies:
            if pharmacy.id not in scoped_ids or pharmacy.id in rep_ids:
                kept.append(pharmacy)
            else:
                result.excluded_by_rep_scope.append(pharmacy.id)

        result.filtered_by_rep_scope = True
        return kept

    async def eligible_pharmacies(self, product_id: str, destination_state: str,
                                  rep_scope_id: Optional[str] = None) -> List[EligiblePharmacy]:
        """Ordered candidates; an empty list means no pharmacy can fulfill"""
        result = await self.evaluate(product_id, destination_state, rep_scope_id)
        return result.candidates
