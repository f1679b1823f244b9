# CREATE FILE: services/common/domain.py

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union


class Role(str, Enum):
    ADMIN = "admin"
    TOPLINE = "topline"
    DOWNLINE = "downline"
    PRACTICE = "practice"
    PROVIDER = "provider"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Parse a role string; legacy "doctor" accounts are providers"""
        normalized = (value or "").strip().lower()
        if normalized == "doctor":
            return cls.PROVIDER
        return cls(normalized)


class PriceTier(str, Enum):
    BASE = "base"          # admin cost
    TOPLINE = "topline"
    DOWNLINE = "downline"
    RETAIL = "retail"      # practice / provider price


@dataclass(frozen=True)
class ActorContext:
    """The resolved ordering party. Built by the caller; the core never looks it up."""
    user_id: str
    role: Role
    practice_id: Optional[str] = None
    provider_id: Optional[str] = None
    linked_rep_id: Optional[str] = None   # rep the practice is linked to
    topline_rep_id: Optional[str] = None  # topline at the head of the actor's hierarchy

    def override_scopes(self) -> List[Tuple[str, str]]:
        """(source, scope_id) pairs searched for price overrides, most specific first"""
        scopes = [("actor", self.user_id)]
        if self.role in (Role.PRACTICE, Role.PROVIDER):
            if self.practice_id and self.practice_id != self.user_id:
                scopes.append(("practice", self.practice_id))
            if self.linked_rep_id:
                scopes.append(("linked_rep", self.linked_rep_id))
        return scopes

    def may_order_for(self, cart_owner_id: str) -> bool:
        if self.role == Role.ADMIN:
            return True
        return cart_owner_id in (self.user_id, self.practice_id)

    @property
    def rep_scope_id(self) -> Optional[str]:
        if self.role == Role.TOPLINE:
            return self.topline_rep_id or self.user_id
        return self.topline_rep_id


@dataclass
class Product:
    id: str
    name: str
    base_price: Decimal
    dosage: Optional[str] = None
    topline_price: Optional[Decimal] = None
    downline_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None
    requires_prescription: bool = False
    active: bool = True

    def tier_default(self, tier: PriceTier) -> Decimal:
        """Tier list price, falling back to base_price when the tier is unset"""
        value = {
            PriceTier.BASE: self.base_price,
            PriceTier.TOPLINE: self.topline_price,
            PriceTier.DOWNLINE: self.downline_price,
            PriceTier.RETAIL: self.retail_price,
        }[tier]
        return self.base_price if value is None else value


@dataclass
class Pharmacy:
    id: str
    name: str
    active: bool = True
    states_serviced: FrozenSet[str] = frozenset()
    priority_map: Dict[str, int] = field(default_factory=dict)

    def serves(self, state: str) -> bool:
        return state in self.states_serviced


@dataclass(frozen=True)
class PharmacyRepAssignment:
    pharmacy_id: str
    topline_rep_id: str


@dataclass
class PriceOverride:
    product_id: str
    scope_id: str
    override_topline_price: Optional[Decimal] = None
    override_downline_price: Optional[Decimal] = None
    override_retail_price: Optional[Decimal] = None
    notes: Optional[str] = None

    def for_tier(self, tier: PriceTier) -> Optional[Decimal]:
        return {
            PriceTier.TOPLINE: self.override_topline_price,
            PriceTier.DOWNLINE: self.override_downline_price,
            PriceTier.RETAIL: self.override_retail_price,
        }.get(tier)


@dataclass(frozen=True)
class RepProductVisibility:
    topline_rep_id: str
    product_id: str
    visible: bool = True


# Destinations: a cart line ships either to a patient or to the practice

@dataclass(frozen=True)
class PatientDestination:
    patient_id: str
    patient_name: str
    state: Optional[str]
    street: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    state_field = "patient_address_state"
    ship_to_practice = False


@dataclass(frozen=True)
class PracticeDestination:
    practice_id: str
    state: Optional[str]

    state_field = "practice_shipping_state"
    ship_to_practice = True


Destination = Union[PatientDestination, PracticeDestination]


@dataclass(frozen=True)
class OrderDetails:
    """Optional prescriber instructions carried on a cart line"""
    prescription_url: Optional[str] = None
    custom_sig: Optional[str] = None
    custom_dosage: Optional[str] = None
    order_notes: Optional[str] = None
    prescription_method: Optional[str] = None


@dataclass
class Cart:
    id: str
    owner_id: str
    created_at: datetime


@dataclass(frozen=True)
class CartLine:
    """A persisted cart line. price_snapshot never changes after creation."""
    id: str
    cart_id: str
    product_id: str
    quantity: int
    price_snapshot: Decimal
    destination_state: str
    assigned_pharmacy_id: str
    destination: Destination
    provider_id: str
    created_at: datetime
    expires_at: datetime
    details: OrderDetails = OrderDetails()

    @property
    def patient_id(self) -> Optional[str]:
        if isinstance(self.destination, PatientDestination):
            return self.destination.patient_id
        return None

    @property
    def line_total(self) -> Decimal:
        return self.price_snapshot * self.quantity

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class RoutingLogEntry:
    product_id: str
    destination_state: str
    rep_scope_id: Optional[str]
    eligible_pharmacies: List[Dict[str, object]]
    selected_pharmacy_id: Optional[str]
    selected_pharmacy_name: Optional[str]
    selection_reason: str
    priority_used: Optional[int]
    created_at: datetime
