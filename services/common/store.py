# CREATE FILE: services/common/store.py

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .domain import (
    Cart, CartLine, Pharmacy, PharmacyRepAssignment, PriceOverride, Product,
    RepProductVisibility, RoutingLogEntry
)
from .errors import CartAccessError, InvariantViolationError, NotFoundError


class PortalStore:
    """
    Async data access used by the routing, pricing and cart services.

    Pharmacy, assignment and override data is read-only to the core. Cart
    writes check ownership here so a caller can never touch another
    owner's cart.
    """

    # Catalog reads

    async def get_product(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError

    async def list_product_pharmacies(self, product_id: str) -> List[Pharmacy]:
        """Pharmacies assigned to a product, in any order"""
        raise NotImplementedError

    async def list_pharmacy_rep_assignments(self, pharmacy_ids: Iterable[str]) -> List[PharmacyRepAssignment]:
        raise NotImplementedError

    async def get_price_override(self, product_id: str, scope_id: str) -> Optional[PriceOverride]:
        raise NotImplementedError

    async def get_product_visibility(self, topline_rep_id: str, product_id: str) -> Optional[RepProductVisibility]:
        raise NotImplementedError

    # Admin writes

    async def replace_product_pharmacies(self, product_id: str, pharmacy_ids: Iterable[str]) -> None:
        """Delete every assignment for the product, then insert the given set"""
        raise NotImplementedError

    # Cart

    async def get_cart(self, owner_id: str) -> Optional[Cart]:
        raise NotImplementedError

    async def create_cart(self, owner_id: str) -> Cart:
        raise NotImplementedError

    async def insert_cart_line(self, owner_id: str, line: CartLine) -> CartLine:
        """Single all-or-nothing write of a fully resolved cart line"""
        raise NotImplementedError

    async def list_cart_lines(self, cart_id: str) -> List[CartLine]:
        raise NotImplementedError

    async def update_cart_line_quantity(self, owner_id: str, line_id: str, quantity: int) -> CartLine:
        raise NotImplementedError

    async def delete_cart_line(self, owner_id: str, line_id: str) -> None:
        raise NotImplementedError

    # Audit

    async def record_routing_decision(self, entry: RoutingLogEntry) -> None:
        raise NotImplementedError

    # Shared helpers

    async def get_or_create_cart(self, owner_id: str) -> Cart:
        """One cart per owner, created lazily on the first line"""
        cart = await self.get_cart(owner_id)
        if cart is None:
            cart = await self.create_cart(owner_id)
        return cart

    async def is_product_visible(self, topline_rep_id: Optional[str], product_id: str) -> bool:
        """Presentation filter for downline ordering screens; products default to visible"""
        if not topline_rep_id:
            return True
        visibility = await self.get_product_visibility(topline_rep_id, product_id)
        return True if visibility is None else visibility.visible

    @staticmethod
    def check_line_invariants(line: CartLine) -> None:
        if not line.assigned_pharmacy_id:
            raise InvariantViolationError(
                f"Cart line {line.id} for product {line.product_id} has no assigned pharmacy"
            )
        if line.quantity < 1:
            raise InvariantViolationError(f"Cart line {line.id} has quantity {line.quantity}")


class InMemoryPortalStore(PortalStore):
    """Dictionary-backed store for local development and tests"""

    def __init__(self):
        self.products: Dict[str, Product] = {}
        self.pharmacies: Dict[str, Pharmacy] = {}
        self.product_pharmacies: Dict[str, List[str]] = {}
        self.rep_assignments: List[PharmacyRepAssignment] = []
        self.overrides: Dict[tuple, PriceOverride] = {}
        self.visibility: Dict[tuple, RepProductVisibility] = {}
        self.carts: Dict[str, Cart] = {}
        self.cart_lines: Dict[str, CartLine] = {}
        self.routing_log: List[RoutingLogEntry] = []
        self.read_count = 0

    # Seeding

    def add_product(self, product: Product, pharmacy_ids: Iterable[str] = ()) -> Product:
        self.products[product.id] = product
        self.product_pharmacies[product.id] = list(pharmacy_ids)
        return product

    def add_pharmacy(self, pharmacy: Pharmacy) -> Pharmacy:
        self.pharmacies[pharmacy.id] = pharmacy
        return pharmacy

    def add_rep_assignment(self, assignment: PharmacyRepAssignment) -> None:
        self.rep_assignments.append(assignment)

    def add_override(self, override: PriceOverride) -> None:
        self.overrides[(override.product_id, override.scope_id)] = override

    def set_visibility(self, visibility: RepProductVisibility) -> None:
        self.visibility[(visibility.topline_rep_id, visibility.product_id)] = visibility

    # Catalog reads

    async def get_product(self, product_id: str) -> Optional[Product]:
        self.read_count += 1
        return self.products.get(product_id)

    async def list_product_pharmacies(self, product_id: str) -> List[Pharmacy]:
        self.read_count += 1
        return [
            self.pharmacies[pharmacy_id]
            for pharmacy_id in self.product_pharmacies.get(product_id, [])
            if pharmacy_id in self.pharmacies
        ]

    async def list_pharmacy_rep_assignments(self, pharmacy_ids: Iterable[str]) -> List[PharmacyRepAssignment]:
        self.read_count += 1
        wanted = set(pharmacy_ids)
        return [a for a in self.rep_assignments if a.pharmacy_id in wanted]

    async def get_price_override(self, product_id: str, scope_id: str) -> Optional[PriceOverride]:
        self.read_count += 1
        return self.overrides.get((product_id, scope_id))

    async def get_product_visibility(self, topline_rep_id: str, product_id: str) -> Optional[RepProductVisibility]:
        return self.visibility.get((topline_rep_id, product_id))

    async def replace_product_pharmacies(self, product_id: str, pharmacy_ids: Iterable[str]) -> None:
        if product_id not in self.products:
            raise NotFoundError("Product", product_id)
        self.product_pharmacies[product_id] = list(pharmacy_ids)

    # Cart

    async def get_cart(self, owner_id: str) -> Optional[Cart]:
        return self.carts.get(owner_id)

    async def create_cart(self, owner_id: str) -> Cart:
        cart = Cart(id=str(uuid.uuid4()), owner_id=owner_id, created_at=datetime.now(timezone.utc))
        self.carts[owner_id] = cart
        return cart

    def _owned_cart_ids(self, owner_id: str) -> set:
        return {cart.id for cart in self.carts.values() if cart.owner_id == owner_id}

    async def insert_cart_line(self, owner_id: str, line: CartLine) -> CartLine:
        self.check_line_invariants(line)
        if line.cart_id not in self._owned_cart_ids(owner_id):
            raise CartAccessError(owner_id, line.cart_id)
        self.cart_lines[line.id] = line
        return line

    async def list_cart_lines(self, cart_id: str) -> List[CartLine]:
        lines = [line for line in self.cart_lines.values() if line.cart_id == cart_id]
        return sorted(lines, key=lambda line: line.created_at)

    def _owned_line(self, owner_id: str, line_id: str) -> CartLine:
        line = self.cart_lines.get(line_id)
        if line is None:
            raise NotFoundError("Cart line", line_id)
        if line.cart_id not in self._owned_cart_ids(owner_id):
            raise CartAccessError(owner_id, line_id)
        return line

    async def update_cart_line_quantity(self, owner_id: str, line_id: str, quantity: int) -> CartLine:
        updated = replace(self._owned_line(owner_id, line_id), quantity=quantity)
        self.check_line_invariants(updated)
        self.cart_lines[line_id] = updated
        return updated

    async def delete_cart_line(self, owner_id: str, line_id: str) -> None:
        self._owned_line(owner_id, line_id)
        del self.cart_lines[line_id]

    async def record_routing_decision(self, entry: RoutingLogEntry) -> None:
        self.routing_log.append(entry)
