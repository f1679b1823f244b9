# CREATE FILE: services/routing_service/routing.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional

from services.common.domain import RoutingLogEntry
from services.common.errors import InvalidStateCodeError
from services.common.store import PortalStore
from .eligibility import EligibilityResult, EligiblePharmacy, PharmacyEligibilityIndex


class RoutingFailureCode(str, Enum):
    INVALID_STATE = "invalid_state"
    NO_ASSIGNMENTS = "no_assignments"
    NO_ELIGIBLE_PHARMACY = "no_eligible_pharmacy"


@dataclass(frozen=True)
class RoutingDecision:
    """
    Outcome of routing one order line. Either pharmacy_id is set (success)
    or failure_code is set (blocked); never both.
    """
    product_id: str
    destination_state: str
    reason: str
    pharmacy_id: Optional[str] = None
    pharmacy_name: Optional[str] = None
    priority: Optional[int] = None
    failure_code: Optional[RoutingFailureCode] = None
    candidates: List[EligiblePharmacy] = field(default_factory=list)
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.pharmacy_id is not None

    @classmethod
    def success(cls, product_id: str, state: str, selected: EligiblePharmacy, reason: str,
                candidates: List[EligiblePharmacy]) -> "RoutingDecision":
        return cls(
            product_id=product_id,
            destination_state=state,
            reason=reason,
            pharmacy_id=selected.pharmacy_id,
            pharmacy_name=selected.name,
            priority=selected.priority,
            candidates=list(candidates),
        )

    @classmethod
    def failure(cls, product_id: str, state: str, code: RoutingFailureCode, reason: str,
                diagnostics: Dict[str, Any] = None) -> "RoutingDecision":
        return cls(
            product_id=product_id,
            destination_state=state,
            reason=reason,
            failure_code=code,
            diagnostics=diagnostics or {},
        )

    def as_response(self) -> Dict[str, Any]:
        """Wire shape of the route-order operation"""
        return {"pharmacy_id": self.pharmacy_id, "reason": self.reason}

    def to_log_entry(self, rep_scope_id: Optional[str]) -> RoutingLogEntry:
        reason = self.reason
        if self.diagnostics:
            reason = f"{reason}. Diagnostics: {self.diagnostics}"
        return RoutingLogEntry(
            product_id=self.product_id,
            destination_state=self.destination_state,
            rep_scope_id=rep_scope_id,
            eligible_pharmacies=[c.as_dict() for c in self.candidates],
            selected_pharmacy_id=self.pharmacy_id,
            selected_pharmacy_name=self.pharmacy_name,
            selection_reason=reason,
            priority_used=self.priority,
            created_at=datetime.now(timezone.utc),
        )


def no_pharmacy_reason(state: str) -> str:
    return f"no pharmacy serves {state} for this product"


def selection_reason(selected: EligiblePharmacy, state: str, candidate_count: int) -> str:
    if candidate_count == 1:
        return f"Single pharmacy match: {selected.name}"
    if selected.has_state_priority:
        return f"State-specific priority match: {selected.name} (priority {selected.priority} for {state})"
    return f"Default/fallback pharmacy: {selected.name} (no priority set for {state})"


class RoutingEngine:
    """
    Decides which pharmacy fulfills an order line.

    Read-only and deterministic: the same inputs over unchanged data give
    the same decision, so callers may retry freely. Audit logging is the
    caller's job (see record_decision).
    """

    def __init__(self, store: PortalStore, config: Dict[str, Any] = None):
        self.store = store
        self.eligibility = PharmacyEligibilityIndex(store, config)

    async def route(self, product_id: str, destination_state: str,
                    rep_scope_id: Optional[str] = None) -> RoutingDecision:
        try:
            result = await self.eligibility.evaluate(product_id, destination_state, rep_scope_id)
        except InvalidStateCodeError as e:
            return RoutingDecision.failure(
                product_id, str(destination_state or ""), RoutingFailureCode.INVALID_STATE, str(e)
            )

        return self.decide(product_id, result)

    def decide(self, product_id: str, result: EligibilityResult) -> RoutingDecision:
        state = result.state
        if result.total_assignments == 0:
            return RoutingDecision.failure(
                product_id, state, RoutingFailureCode.NO_ASSIGNMENTS,
                no_pharmacy_reason(state), result.diagnostics
            )

        if not result.candidates:
            return RoutingDecision.failure(
                product_id, state, RoutingFailureCode.NO_ELIGIBLE_PHARMACY,
                no_pharmacy_reason(state), result.diagnostics
            )

        selected = result.candidates[0]
        return RoutingDecision.success(
            product_id, state, selected,
            selection_reason(selected, state, len(result.candidates)),
            result.candidates,
        )

    async def record_decision(self, decision: RoutingDecision, rep_scope_id: Optional[str]) -> None:
        """Append a decision to the order routing audit log"""
        await self.store.record_routing_decision(decision.to_log_entry(rep_scope_id))
